"""
The options bundle that steers decoding and encoding.

An `Options` value is immutable: it carries the active flags, the symbol
alias table, and (optionally) the link that callables and lazy sequences
created under it must talk to. Refinements go through `derive`, which
returns a new bundle and leaves the source untouched.
"""
from __future__ import annotations

import collections.abc
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

# Mutually exclusive flag groups; the first member of each group is the default.
FLAG_SETS = (
    ("vectors", "seqs", "seq-fn"),
    ("structured", "full-form"),
    ("functions", "no-functions"),
    ("hash-maps", "no-hash-maps"),
    ("as-expression", "as-function"),
    ("no-N", "N"),
    ("quiet", "verbose"),
    ("lenient", "strict"),
)

_GROUP_OF = {flag: group for group in FLAG_SETS for flag in group}

DEFAULT_FLAGS = frozenset(group[0] for group in FLAG_SETS)


def _frozen_aliases(aliases: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType({str(k): str(v) for k, v in (aliases or {}).items()})


def merge_flags(base: frozenset, flags) -> frozenset:
    """Apply `flags` over `base`, each flag evicting the rest of its group."""
    out = set(base)
    for flag in flags:
        group = _GROUP_OF.get(flag)
        if group is None:
            raise ValueError(f"Unknown option flag: {flag!r}")
        out.difference_update(group)
        out.add(flag)
    return frozenset(out)


@dataclass(frozen=True)
class Options:
    """Flags, symbol aliases, and the active link for one top-level call.

    `aliases` maps kernel symbol names to host identifiers. Keys are
    spelled the host way, with `/` as the context separator
    (`System/Plus`, not ``System`Plus``). The inverse,
    used when converting host symbols back to the kernel, is computed once
    when the bundle is built.
    """
    flags: frozenset = DEFAULT_FLAGS
    aliases: Mapping[str, str] = field(default_factory=dict)
    link: Any = field(default=None, compare=False)
    reverse_aliases: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "flags", merge_flags(DEFAULT_FLAGS, self.flags))
        object.__setattr__(self, "aliases", _frozen_aliases(self.aliases))
        inverse = {host: foreign for foreign, host in self.aliases.items()}
        object.__setattr__(self, "reverse_aliases", MappingProxyType(inverse))

    def __hash__(self):
        return hash((self.flags, tuple(sorted(self.aliases.items()))))

    def flag(self, name: str) -> bool:
        if name not in _GROUP_OF:
            raise ValueError(f"Unknown option flag: {name!r}")
        return name in self.flags

    _UNSET = object()

    def derive(self, *flags: str, aliases=_UNSET, link=_UNSET) -> 'Options':
        """Return a new bundle with the named overrides applied."""
        return Options(
            flags=merge_flags(self.flags, flags),
            aliases=self.aliases if aliases is Options._UNSET else aliases,
            link=self.link if link is Options._UNSET else link,
        )

    def with_link(self, link) -> 'Options':
        return self.derive(link=link)

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> 'Options':
        """Build from a plain config dict: `{'flags': [...], 'aliases': {...}}`."""
        cfg = dict(cfg or {})
        flags = cfg.pop('flags', None) or []
        aliases = cfg.pop('aliases', None) or {}
        if cfg:
            raise ValueError(f"Unknown option keys: {sorted(cfg)}")
        if isinstance(flags, str):
            flags = [flags]
        if not isinstance(aliases, collections.abc.Mapping):
            raise ValueError("'aliases' must be a mapping of kernel symbol to host name")
        return cls(flags=merge_flags(DEFAULT_FLAGS, flags), aliases=aliases)

    @classmethod
    def from_yaml(cls, text: str) -> 'Options':
        return cls.from_mapping(yaml.safe_load(text) or {})


DEFAULT_OPTIONS = Options()


def load_options(path: str | Path) -> Options:
    """Read an options bundle from a YAML file."""
    return Options.from_yaml(Path(path).read_text(encoding="utf-8"))


def _load_alias_table(name: str) -> Mapping[str, str]:
    table_path = Path(__file__).parent / name
    with open(table_path, "r", encoding="utf-8") as f:
        return _frozen_aliases(yaml.safe_load(f))


OPERATOR_ALIASES = _load_alias_table("aliases.yaml")
