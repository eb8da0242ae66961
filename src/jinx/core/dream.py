"""Parsing of `/dream` command text into a txt2img request."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

DEFAULT_NEGATIVE = "BadDream easynegative"
SAMPLER_NAME = "DPM++ 2M Karras"

# Sampler steps for quality 1..5.
QUALITY_STEPS = (20, 30, 40, 50, 60)

MIN_SIZE = 256
MAX_SIZE = 812

DIGITS = re.compile(r"[0-9]+")

# Flags start at the first word beginning with "-" followed by a letter.
FLAGS_START = re.compile(r"(?:^|\s)-[a-zA-Z]")

FLAG_PATTERN = re.compile(
    r"""
    (?:^|\s)--?(?P<name>[a-zA-Z]+)
    (?:
        (?:=|\s+)
        (?:
            "(?P<double>[^"]*)"
          | '(?P<single>[^']*)'
          | [“”](?P<curly>[^“”]*)”
          | «(?P<guillemet>[^»]*)»
          | ‹(?P<angle>[^›]*)›
          | (?P<bare>[^\s"'“”«‹\-][^\s]*)
        )
    )?
    """,
    re.VERBOSE,
)

ALIASES = {
    "q": "quality",
    "d": "diversity",
    "a": "attention",
    "s": "seed",
    "w": "width",
    "h": "height",
    "rf": "restoreFaces",
    "tile": "tiling",
    "no": "negativePrompt",
    "neg": "negativePrompt",
}

LABELS = {
    "quality": "Quality",
    "diversity": "Diversity",
    "attention": "Attention",
    "seed": "Seed",
    "width": "Width",
    "height": "Height",
    "restoreFaces": "Restore faces",
    "tiling": "Tiling",
    "negativePrompt": "Negative prompt",
}


class DreamFlagsError(ValueError):
    """Raised with every problem found in a dream command."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass
class DreamRequest:
    prompt: str
    quality: int = 3
    diversity: float = 0.0
    attention: int = 7
    seed: int = -1
    width: int = 512
    height: int = 512
    restore_faces: bool = False
    tiling: bool = False
    negative_prompt: str = ""
    text: str = field(default="", repr=False)

    def to_txt2img(self) -> dict[str, Any]:
        """Build the payload for the web UI's `/sdapi/v1/txt2img` endpoint."""
        return {
            "prompt": self.prompt,
            "negative_prompt": f"{self.negative_prompt} {DEFAULT_NEGATIVE}".strip(),
            "width": self.width,
            "height": self.height,
            "seed": self.seed,
            "sampler_name": SAMPLER_NAME,
            "steps": QUALITY_STEPS[self.quality - 1],
            "tiling": self.tiling,
            "restore_faces": self.restore_faces,
            "subseed": -1,
            "subseed_strength": self.diversity,
            "cfg_scale": self.attention,
        }


def split_prompt(text: str) -> tuple[str, str]:
    """Split command text into ``(prompt, flag_string)``."""
    text = text.strip()
    match = FLAGS_START.search(text)
    if match is None:
        return text, ""
    return text[: match.start()].strip(), text[match.start() :]


def _int_in_range(label: str, value: str, low: int, high: int, errors: list[str]) -> int | None:
    if not DIGITS.fullmatch(value):
        errors.append(f"{label} flag must be a number.")
        return None
    number = int(value)
    if not low <= number <= high:
        errors.append(f"{label} flag must be between {low} and {high}.")
        return None
    return number


def _boolean(label: str, value: str | None, errors: list[str]) -> bool | None:
    if value is None:
        return True
    if value not in ("true", "false"):
        errors.append(f"{label} flag must be true or false.")
        return None
    return value == "true"


def parse_dream(text: str) -> DreamRequest:  # noqa: C901, PLR0912
    """
    Parse ``<prompt> [-flag value ...]`` into a :class:`DreamRequest`.

    Raises:
        DreamFlagsError: with every error found, once the whole text is read.

    """
    prompt, flag_string = split_prompt(text)
    if not prompt:
        raise DreamFlagsError(["You need to provide a prompt for the dream command."])

    request = DreamRequest(prompt=prompt, text=text.strip())
    errors: list[str] = []

    for match in FLAG_PATTERN.finditer(flag_string):
        raw_name = match.group("name")
        name = ALIASES.get(raw_name, raw_name)
        value = next(
            (
                match.group(group)
                for group in ("double", "single", "curly", "guillemet", "angle", "bare")
                if match.group(group) is not None
            ),
            None,
        )
        label = LABELS.get(name)
        if label is None:
            errors.append(f"Unknown flag: {raw_name}")
            continue
        if value is None and name not in ("restoreFaces", "tiling"):
            errors.append(f"{label} flag must have a value.")
            continue

        if name == "quality":
            number = _int_in_range(label, value, 1, len(QUALITY_STEPS), errors)
            if number is not None:
                request.quality = number
        elif name == "diversity":
            try:
                diversity = float(value)
            except ValueError:
                diversity = -1.0
            if 0.0 <= diversity <= 1.0:
                request.diversity = diversity
            else:
                errors.append(f"{label} flag must be between 0 and 1.")
        elif name == "attention":
            number = _int_in_range(label, value, 1, 15, errors)
            if number is not None:
                request.attention = number
        elif name == "seed":
            if DIGITS.fullmatch(value):
                request.seed = int(value)
            else:
                errors.append(f"{label} flag must be a number.")
        elif name in ("width", "height"):
            number = _int_in_range(label, value, MIN_SIZE, MAX_SIZE, errors)
            if number is not None:
                setattr(request, name, number)
        elif name == "restoreFaces":
            flag = _boolean(label, value, errors)
            if flag is not None:
                request.restore_faces = flag
        elif name == "tiling":
            flag = _boolean(label, value, errors)
            if flag is not None:
                request.tiling = flag
        else:
            request.negative_prompt = value

    if errors:
        raise DreamFlagsError(errors)
    return request


__all__ = [
    "DEFAULT_NEGATIVE",
    "QUALITY_STEPS",
    "SAMPLER_NAME",
    "DreamFlagsError",
    "DreamRequest",
    "parse_dream",
    "split_prompt",
]
