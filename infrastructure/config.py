"""
ANNOGRAPH CONFIG - Knowledge Graph Settings

Settings drive both graph construction (what goes into the graph) and
rendering (how the Renderer treats what is there). A change to any
build-relevant setting triggers a full rebuild of the Graph.

Resolution order: Explicit overrides -> Environment -> TOML -> Defaults

Usage:
    from infrastructure.config import load_settings

    settings = load_settings()                     # ./annograph.toml + env
    settings = load_settings("custom.toml")
    settings = settings.replace(include_folders=False)
"""
import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import msgspec

from core.ontology import GraphMode


DEFAULT_CONFIG_FILE = "annograph.toml"
ENV_PREFIX = "ANNOGRAPH_"


class ConfigError(Exception):
    """Raised when settings cannot be decoded into KnowledgeGraphSettings."""
    pass


# =============================================================================
# SETTINGS
# =============================================================================

class KnowledgeGraphSettings(msgspec.Struct, kw_only=True, frozen=True):
    """Configuration for graph construction, rendering hints and search."""
    # === Graph construction ===
    graph_mode: GraphMode = GraphMode.HIERARCHY   # Which link types get coloured
    include_folders: bool = True                  # Emit folder nodes and containment
    root_folder_id: Optional[str] = None          # Build scope. None = whole corpus
    intra_image_relations: bool = True            # Self-loop on an image for relations inside it

    # === Rendering hints ===
    hide_isolated_nodes: bool = False             # Hide nodes with degree 0
    hide_all_labels: bool = False
    hide_node_type_labels: List[str] = msgspec.field(default_factory=list)

    # === Search ===
    fuzzy_threshold: float = 0.6                  # SequenceMatcher ratio for "fuzzy"
    search_limit: int = 100                       # Max distinct values searched per query

    # === Logging ===
    log_level: str = "INFO"
    log_path: Optional[str] = None                # JSONL event journal directory; None = off

    def replace(self, **changes: Any) -> "KnowledgeGraphSettings":
        """Return a copy with the given fields changed."""
        return msgspec.structs.replace(self, **changes)

    def requires_rebuild(self, other: "KnowledgeGraphSettings") -> bool:
        """True if switching from `self` to `other` changes the built graph."""
        return (
            self.include_folders != other.include_folders or
            self.root_folder_id != other.root_folder_id or
            self.intra_image_relations != other.intra_image_relations
        )


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the [graph] section (or the top level) of a TOML settings file.

    Missing files yield an empty dict; unreadable files warn and yield an
    empty dict.
    """
    config_path = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_FILE
    if not config_path.exists():
        return {}

    try:
        import tomllib
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except Exception as e:
        warnings.warn(f"Failed to load config from TOML: {e}")
        return {}

    return dict(data.get("graph", data))


def load_env_config(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Collect ANNOGRAPH_* environment overrides.

    Values stay strings; msgspec.convert(strict=False) coerces them to the
    declared field types.
    """
    environ = os.environ if environ is None else environ
    fields = set(KnowledgeGraphSettings.__struct_fields__)
    result: Dict[str, Any] = {}

    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name not in fields:
            continue
        if name == "hide_node_type_labels":
            result[name] = [v.strip() for v in value.split(",") if v.strip()]
        else:
            result[name] = value
    return result


def settings_from_dict(data: Dict[str, Any]) -> KnowledgeGraphSettings:
    """Decode and validate a settings mapping."""
    try:
        return msgspec.convert(data, type=KnowledgeGraphSettings, strict=False)
    except msgspec.ValidationError as e:
        raise ConfigError(f"Invalid knowledge graph settings: {e}") from e


def load_settings(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None,
    **overrides: Any,
) -> KnowledgeGraphSettings:
    """
    Load settings with explicit overrides taking priority over environment,
    and environment over the TOML file.

    Raises:
        ConfigError: If the merged settings fail validation
    """
    merged: Dict[str, Any] = {}
    merged.update(load_toml_config(path))
    merged.update(load_env_config(environ))
    merged.update(overrides)
    return settings_from_dict(merged)
