import os
import re
import yaml
from typing import Any, Dict, List, Optional
from ..models import log, SiteProfile
from ..utils.formatting import valid_selectors

DEFAULT_PROFILE_PATHS = ["sites.yaml", "~/.config/novelpull/sites.yaml"]

def _positive(value: Any, cast, field_name: str, profile_name: str):
    if value is None: return None
    try:
        value = cast(value)
    except (TypeError, ValueError):
        log.warning(f"Ignoring non-numeric {field_name} in profile {profile_name}")
        return None
    return value if value > 0 else None

class ProfileManager:
    """Site profiles read from YAML; the first profile whose pattern matches a URL wins."""
    _instance = None

    def __init__(self, config_paths: Optional[List[str]] = None):
        self.profiles: List[SiteProfile] = []
        for path in config_paths or []:
            self.load_config(os.path.expanduser(path))

    @classmethod
    def get_instance(cls):
        if not cls._instance:
            paths = list(DEFAULT_PROFILE_PATHS)
            extra = os.getenv("NOVELPULL_SITES")
            if extra: paths.insert(0, extra)
            cls._instance = cls(paths)
        return cls._instance

    def load_config(self, path: str):
        if not os.path.exists(path): return
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            log.warning(f"Failed to load config {path}: {e}")
            return
        if not isinstance(data, list):
            log.warning(f"Config {path} must be a list of site profiles")
            return
        loaded = [self.profile_from_dict(item) for item in data if isinstance(item, dict)]
        self.profiles.extend(loaded)
        log.info(f"Loaded {len(loaded)} profiles from {path}")

    @staticmethod
    def profile_from_dict(item: Dict[str, Any]) -> SiteProfile:
        name = item.get("name", "Unknown")
        content_selector = item.get("content_selector")
        if content_selector and not valid_selectors([content_selector], f"profile {name}"):
            content_selector = None
        return SiteProfile(
            name=name,
            domain_patterns=list(item.get("domains") or []),
            driver_alias=item.get("driver"),
            content_selector=content_selector,
            remove_selectors=valid_selectors(item.get("remove") or [], f"profile {name}"),
            disallowed_markers=list(item.get("disallowed_markers") or []),
            headers=dict(item.get("headers") or {}),
            batch_size=_positive(item.get("batch_size"), int, "batch_size", name),
            max_attempts=_positive(item.get("max_attempts"), int, "max_attempts", name),
            retry_delay=_positive(item.get("retry_delay"), float, "retry_delay", name),
        )

    def get_profile(self, url: str) -> Optional[SiteProfile]:
        for p in self.profiles:
            for pattern in p.domain_patterns:
                try:
                    if re.search(pattern, url): return p
                except re.error:
                    log.warning(f"Invalid domain pattern '{pattern}' in profile {p.name}")
        return None
