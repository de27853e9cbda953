"""
Variation catalogs: camera angles, directors and b-roll directives.
Users pick a variation kind, we pick the entries and build the actual prompt.
"""

import random
from typing import Optional, Sequence, TypeVar

from variations.pipeline.models import StyleDescriptor

T = TypeVar("T")


# First 4 used for video variations, all 8 for image variations
CAMERA_ANGLES = (
    "EXTREME LOW-ANGLE HERO: CAMERA JUST ABOVE GROUND, TILTED UP; architecture looms while SILHOUETTE STAYS READABLE.",
    "PROFILE EXTREME CLOSE-UP: NOSE-LIP-CHIN CONTOUR in relief; single kicker light sculpts the edge.",
    "GOLDEN HOUR BACKLIGHTING: SUBJECT ILLUMINATED FROM BEHIND with warm rim lighting; creates atmospheric depth with glowing edges and soft shadows.",
    "WIDE-ANGLE ENVIRONMENTAL SHOT: SUBJECT IN CONTEXT with surrounding space; captures relationship between subject and environment with expansive field of view.",
    "DUTCH ANGLE DYNAMIC: CAMERA TILTED 25-45 DEGREES; creates tension and energy while maintaining subject clarity.",
    "OVERHEAD BIRD'S EYE VIEW: CAMERA DIRECTLY ABOVE looking down; flattens perspective and creates geometric patterns.",
    "CINEMATIC TELEPHOTO COMPRESSION: LONG LENS, SHALLOW DEPTH; subject isolated with beautifully blurred foreground and background.",
    "WORM'S EYE ULTRA-WIDE: EXTREME LOW ANGLE with wide lens; dramatic distortion emphasizes height and power.",
)

DIRECTORS = (
    "Agnès Varda",
    "Akira Kurosawa",
    "Alfred Hitchcock",
    "Andrei Tarkovsky",
    "Atsuko Hirayanagi",
    "Bong Joon-ho",
    "Brian De Palma",
    "Chloé Zhao",
    "Christopher Nolan",
    "Dario Argento",
    "David Cronenberg",
    "David Fincher",
    "David Lynch",
    "David O. Russell",
    "Denis Villeneuve",
    "Derek Cianfrance",
    "Edward Yang",
    "Gaspar Noé",
    "Hirokazu Kore-eda",
    "Joel Coen",
    "Krzysztof Kieslowski",
    "Lars von Trier",
    "Lee Chang-dong",
    "Leos Carax",
    "Martin Scorsese",
    "Matt Reeves",
    "Nicolas Winding Refn",
    "Oliver Stone",
    "Oz Perkins",
    "Park Chan-wook",
    "Pedro Almodóvar",
    "Quentin Tarantino",
    "Robert Altman",
    "Robert Bresson",
    "Roy Andersson",
    "Sam Raimi",
    "Stanley Kubrick",
    "Steven Soderbergh",
    "Terrence Malick",
    "Tobe Hooper",
    "Todd Haynes",
    "Wes Anderson",
    "Wong Kar-wai",
    "Yorgos Lanthimos",
)

# (tag, directive)
B_ROLL = (
    ("hands-detail", "extreme close-up of hands interacting with a key object from the scene"),
    ("texture-macro", "macro study of the dominant surface texture, shallow focus falling off quickly"),
    ("establishing-wide", "wide establishing view of the surrounding location, subject absent or tiny in frame"),
    ("atmosphere", "atmospheric insert of light through haze, dust or steam drifting across the frame"),
    ("prop-insert", "tight insert of a meaningful prop resting in the environment"),
    ("reflection", "the scene seen indirectly through a reflection in glass, water or metal"),
    ("silhouette", "backlit silhouette of the subject or a foreground element against the brightest area"),
    ("over-shoulder", "over-the-shoulder view revealing what the subject is looking at"),
    ("ground-level", "ground-level detail of footsteps, floor or terrain with the horizon tilted low"),
    ("transition-motion", "motion-blurred passing foreground element suited as a cut transition"),
    ("window-light", "quiet interior corner lit only by window light, no subject present"),
    ("sky-cutaway", "cutaway to the sky or ceiling matching the reference light and colour temperature"),
)


# ── Selection ────────────────────────────────────────────────────────────────

def select_random_items(items: Sequence[T], count: int, rng: Optional[random.Random] = None) -> list[T]:
    """
    `count` random entries from `items`.

    Unique while count <= len(items); beyond that a shuffled copy is cycled.
    """
    if count <= 0 or not items:
        return []
    rng = rng or random
    if count <= len(items):
        return rng.sample(list(items), count)
    shuffled = list(items)
    rng.shuffle(shuffled)
    return [shuffled[i % len(shuffled)] for i in range(count)]


# ── Prompt builders ──────────────────────────────────────────────────────────

def build_camera_prompt(camera_angle: str, user_context: Optional[str] = None) -> str:
    prompt = f"Apply this camera angle: {camera_angle}"
    if user_context:
        prompt += f" Context: {user_context}"
    return prompt


def build_director_prompt(director_name: str, user_context: Optional[str] = None) -> str:
    prompt = (
        "Make it look as though it were shot by a film director or cinematographer: "
        f"{director_name}."
    )
    if user_context:
        prompt += f" {user_context}"
    return prompt


def build_broll_prompt(directive: str, style: StyleDescriptor, user_context: Optional[str] = None) -> str:
    """B-roll prompt whose style section is filled from the source analysis."""
    palette = ", ".join(style.color_palette.dominant) or style.color_palette.grading
    atmosphere = ", ".join(style.lighting.atmosphere) or "clear"
    lines = [
        "INSTRUCTIONS:",
        f"- Create a B-ROLL shot: {directive}.",
        "- Match the reference image's cinematic style and atmosphere exactly.",
        "- Focus on supporting detail that enhances the main footage.",
        "STYLE MATCHING:",
        f"- Color Palette: {palette}",
        f"- Lighting: {style.lighting.quality} lighting with {style.lighting.direction}",
        f"- Mood: {style.narrative_tone.primary_mood}",
        f"- Atmospheric Qualities: {atmosphere}",
        "CAMERA AESTHETICS:",
        "- Lens: 35mm or 50mm prime, controlled depth of field.",
        "- Composition: Clean, purposeful framing that supports the narrative.",
        "LIGHTING AND TONE:",
        "- Match the reference's lighting approach and tonal values.",
        "- Preserve color grading, saturation level, and temperature.",
    ]
    if user_context:
        lines += ["", "USER PROMPT:", user_context]
    return "\n".join(lines)
