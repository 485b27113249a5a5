from typing import Optional

from ..models import SiteProfile
from ..drivers.base import BaseDriver
from ..drivers.novelfire import NovelFireDriver
from ..drivers.wtrlab import WtrLabDriver
from ..drivers.wuxiaworld import WuxiaWorldDriver
from ..drivers.webnovel import WebNovelDriver

DRIVERS = (NovelFireDriver, WtrLabDriver, WuxiaWorldDriver, WebNovelDriver)

class DriverDispatcher:
    @staticmethod
    def get_driver(url: str, profile: Optional[SiteProfile] = None) -> Optional[BaseDriver]:
        if profile and profile.driver_alias:
            alias = profile.driver_alias.lower()
            if alias in ("novelfire", "nf"): return NovelFireDriver()
            if alias in ("wtrlab", "wtr-lab", "wtr"): return WtrLabDriver()
            if alias in ("wuxiaworld", "wuxia"): return WuxiaWorldDriver()
            if alias == "webnovel": return WebNovelDriver()

        for driver_cls in DRIVERS:
            driver = driver_cls()
            if driver.matches(url):
                return driver
        return None
