"""Parsing and serialising of kernel boot parameters."""

from __future__ import annotations

from typing import Optional


class KernelArgs(dict):
    """Kernel boot parameters keyed by name.

    ``"key=value"`` maps to ``"value"``, ``"key="`` maps to ``""`` and a bare
    ``"key"`` maps to ``None``.
    """

    def __str__(self) -> str:
        fields = []
        for key, value in self.items():
            fields.append(key if value is None else f"{key}={value}")
        return " ".join(fields)


def parse_kernel_args(raw_string: str) -> KernelArgs:
    """Parse a whitespace separated kernel command line into ``KernelArgs``."""
    args = KernelArgs()
    for field in raw_string.split():
        key, sep, value = field.partition("=")
        args[key] = value if sep else None
    return args


def _value(args: KernelArgs, key: str) -> Optional[str]:
    return args.get(key)