"""Load per-level content corpora from YAML or JSON files."""

import json
import re
from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from kiip_trainer.models.content import LevelCorpus

logger = structlog.get_logger()

_SUFFIXES = (".yaml", ".yml", ".json")
_LEVEL_FILE = re.compile(r"^level(\d+)$")


def _read(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        if path.suffix == ".json":
            return json.load(f)
        return yaml.safe_load(f) or {}


def load_level_corpus(level: int, corpus_dir: Path) -> LevelCorpus:
    """Load ``level{N}`` from the corpus directory.

    Raises:
        FileNotFoundError: If no file exists for the level.
    """
    for suffix in _SUFFIXES:
        path = corpus_dir / f"level{level}{suffix}"
        if path.exists():
            data = _read(path)
            if not isinstance(data, dict):
                raise ValueError(f"Corpus file must hold a mapping: {path}")
            data.setdefault("level", level)
            corpus = LevelCorpus.model_validate(data)
            logger.debug(
                "corpus_loaded",
                level=level,
                path=str(path),
                vocabulary=len(corpus.vocabulary),
                dialogues=len(corpus.dialogues),
            )
            return corpus
    raise FileNotFoundError(f"Corpus file not found for level {level} in {corpus_dir}")


def load_all_corpora(corpus_dir: Path) -> dict[int, LevelCorpus]:
    """Load every level file in the directory, skipping unreadable ones."""
    corpora: dict[int, LevelCorpus] = {}
    if not corpus_dir.exists():
        return corpora
    for path in sorted(corpus_dir.iterdir()):
        match = _LEVEL_FILE.match(path.stem)
        if not match or path.suffix not in _SUFFIXES:
            continue
        level = int(match.group(1))
        if level in corpora:
            continue
        try:
            corpora[level] = load_level_corpus(level, corpus_dir)
        except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
            logger.warning("corpus_parse_error", path=str(path), error=str(e))
    return corpora
