
from __future__ import annotations

import uuid
import random
from typing import Optional, Dict, Any

from faker import Faker
from mesa import Agent

from .consent import ConsentGate
from .identity import EnvironmentSignals
from .storage import MemoryStorage
from .logging_utils import get_logger

log = get_logger("visitor")

SCREENS = [
    (1920, 1080, 24), (1536, 864, 24), (1366, 768, 24), (2560, 1440, 30),  # desktop
    (820, 1180, 24), (768, 1024, 24),                                      # tablet
    (390, 844, 32), (412, 915, 24), (375, 667, 24),                        # mobile
]
PLATFORMS = ["Win32", "MacIntel", "Linux x86_64", "iPhone", "Linux armv8l"]

# consent choice -> probability; "ignore" leaves the banner up
DEFAULT_CONSENT_MIX = {"accept_all": 0.55, "necessary_only": 0.3, "ignore": 0.15}


class VisitorAgent(Agent):
    """A simulated browser: its own storages, screen and consent habit."""

    def __init__(
        self,
        unique_id: str,
        model,
        *,
        channel: str = "Direct",
        consent_mix: Optional[Dict[str, float]] = None,
        rng: Optional[random.Random] = None,
        faker: Optional[Faker] = None,
    ):
        # IMPORTANT: no super().__init__ (no mesa model is scheduled here)
        self.unique_id = unique_id
        self.model = model
        self.channel = channel

        self.sim_rng = rng or random.Random()
        self.visitor_id = str(uuid.UUID(int=self.sim_rng.getrandbits(128)))
        self._faker = faker or Faker()

        # browser environment
        w, h, depth = self.sim_rng.choice(SCREENS)
        self.screen = (w, h, depth)
        self.viewport_width = w
        self.viewport_height = max(1, h - 120)  # browser chrome
        self.user_agent = self._faker.user_agent()
        self.language = self._faker.locale().replace("_", "-")
        self.platform = self.sim_rng.choice(PLATFORMS)
        self.timezone = self._faker.timezone()

        self.session_storage = MemoryStorage()
        self.local_storage = MemoryStorage()

        mix = consent_mix or DEFAULT_CONSENT_MIX
        choices, weights = zip(*mix.items())
        self.consent_choice: str = self.sim_rng.choices(choices, weights=weights, k=1)[0]

    def read_signals(self) -> EnvironmentSignals:
        w, h, depth = self.screen
        return EnvironmentSignals(
            user_agent=self.user_agent,
            language=self.language,
            platform=self.platform,
            screen_width=w,
            screen_height=h,
            color_depth=depth,
            timezone=self.timezone,
        )

    def decide_consent(self, gate: ConsentGate) -> None:
        if not gate.show_banner:
            return
        if self.consent_choice == "accept_all":
            gate.accept_all()
        elif self.consent_choice == "necessary_only":
            gate.accept_necessary_only()
        log.debug("visitor_consent", extra={"visitor_id": self.visitor_id, "choice": self.consent_choice})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visitor_id": self.visitor_id,
            "channel": self.channel,
            "viewport_width": self.viewport_width,
            "platform": self.platform,
            "timezone": self.timezone,
            "consent_choice": self.consent_choice,
        }

    def __repr__(self) -> str:
        return (
            f"VisitorAgent(visitor_id={self.visitor_id}, channel={self.channel}, "
            f"viewport={self.viewport_width}, consent={self.consent_choice})"
        )
