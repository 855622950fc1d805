"""
Variant selection — choice parsing and the comparison shown before it.

Pure functions; the prompt loop lives in ``agentvm.ui.cli.select``.
"""

from __future__ import annotations

from typing import Literal

from agentvm.core.models.variant import Variant

QUIT = "quit"

Choice = Variant | Literal["quit"]

_SYNONYMS: dict[str, Choice] = {
    "1": Variant.NIXOS,
    "nixos": Variant.NIXOS,
    "2": Variant.ARCH,
    "arch": Variant.ARCH,
    "arch-linux": Variant.ARCH,
    "q": QUIT,
    "quit": QUIT,
}

PROMPT = "Enter your choice [1/2/q]"
INVALID_CHOICE = "Invalid choice. Please enter 1, 2, or q."


def parse_choice(raw: str) -> Choice | None:
    """Map user input to a variant or ``"quit"``; None when unrecognised."""
    return _SYNONYMS.get(raw.strip().lower())


# ── Presentation ────────────────────────────────────────────────

VARIANT_BLURBS: dict[Variant, tuple[str, list[str]]] = {
    Variant.NIXOS: (
        "🔄 NIXOS (Declarative)",
        [
            "Package Manager: Nix (declarative, reproducible)",
            "Release Model: Controlled releases",
            "Updates: Predictable, tested packages",
            "Best For: Production environments, maximum reproducibility",
        ],
    ),
    Variant.ARCH: (
        "🐧 ARCH LINUX (Pacman + AUR)",
        [
            "Package Manager: pacman + AUR (latest packages)",
            "Release Model: Rolling release (continuous updates)",
            "Updates: Latest software, AUR access",
            "Best For: Development, latest tools, flexibility",
        ],
    ),
}

COMPARISON: list[tuple[str, str, str]] = [
    ("Packages", "Declarative", "Latest + AUR"),
    ("Updates", "Controlled", "Rolling"),
    ("Reproducibility", "⭐⭐⭐⭐⭐", "⭐⭐⭐"),
    ("Setup Complexity", "Higher", "Lower"),
    ("Package Choice", "Good", "Excellent"),
]

MENU: list[tuple[str, str]] = [
    ("1", "NixOS (Declarative, Reproducible)"),
    ("2", "Arch Linux (Latest packages, AUR)"),
    ("q", "Quit"),
]


def comparison_table() -> list[str]:
    """Feature comparison rows as aligned text lines."""
    header = ("Feature", Variant.NIXOS.display_name, Variant.ARCH.display_name)
    rows = [header, *COMPARISON]
    widths = [max(len(row[i]) for row in rows) for i in range(3)]
    lines = []
    for index, row in enumerate(rows):
        lines.append(" │ ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))
        if index == 0:
            lines.append("─┼─".join("─" * w for w in widths))
    return lines
