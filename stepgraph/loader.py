"""Load workflow definitions from YAML or JSON files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from .contracts import Workflow

logger = logging.getLogger(__name__)


def parse_workflow(data: Dict[str, Any]) -> Workflow:
    """Validate a raw mapping into a ``Workflow``."""
    return Workflow.model_validate(data)


def load_workflow(path: Union[str, Path]) -> Workflow:
    """Read a workflow definition from ``path``.

    Files ending in ``.json`` are parsed as JSON, everything else as YAML.

    Raises:
        FileNotFoundError: if ``path`` does not exist.
        pydantic.ValidationError: if the document is not a valid workflow.
    """
    path = Path(path)
    text = path.read_text()
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text) or {}
    workflow = parse_workflow(data)
    logger.debug(f"Loaded workflow {workflow.id} v{workflow.version} from {path}")
    return workflow
