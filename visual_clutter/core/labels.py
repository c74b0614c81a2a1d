"""
Label table: ordered class names indexed by the model's class index.
"""
import json
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence, Union

from visual_clutter.utils.failures import ConfigError


class LabelTable(Sequence[str]):
    """Immutable, ordered list of class names."""

    def __init__(self, names: Iterable[str]):
        names = tuple(names)
        if not names:
            raise ConfigError("Label table must contain at least one class name")
        for i, name in enumerate(names):
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"Label {i} is not a non-empty string: {name!r}")
        self._names = tuple(name.strip() for name in names)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LabelTable":
        """
        Load labels from a JSON list or a text file with one name per line.

        Blank lines and lines starting with '#' are ignored in text files.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read label file {path}: {e}") from e

        if path.suffix.lower() == ".json":
            try:
                names = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in label file {path}: {e}") from e
            if not isinstance(names, list):
                raise ConfigError(f"Label file {path} must contain a JSON list")
            return cls(names)

        lines = (line.strip() for line in text.splitlines())
        return cls(line for line in lines if line and not line.startswith("#"))

    @classmethod
    def from_config(cls, model_conf: dict) -> Optional["LabelTable"]:
        """Build from a 'model' config section; None when no labels are configured."""
        if model_conf.get("labels_file"):
            return cls.from_file(model_conf["labels_file"])
        names = model_conf.get("labels") or []
        if not isinstance(names, list):
            raise ConfigError("model.labels must be a list of strings")
        return cls(names) if names else None

    @property
    def names(self):
        return self._names

    def __len__(self) -> int:
        return len(self._names)

    def __getitem__(self, index):
        return self._names[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __eq__(self, other) -> bool:
        if isinstance(other, LabelTable):
            return self._names == other._names
        if isinstance(other, (list, tuple)):
            return self._names == tuple(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._names)

    def __repr__(self) -> str:
        return f"LabelTable({list(self._names)!r})"
