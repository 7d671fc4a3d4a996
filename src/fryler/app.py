"""Application context wiring."""

from __future__ import annotations

from dataclasses import dataclass

from fryler.config import AppConfig, ConfigSnapshot
from fryler.db.store import FrylerStore
from fryler.heartbeat.jobs import run_heartbeat_tick
from fryler.heartbeat.loop import HeartbeatLoop
from fryler.llm.client import ClaudeClient
from fryler.outbox import Outbox
from fryler.prompting.identity import IdentityFiles


@dataclass(slots=True)
class AppContext:
    config: AppConfig
    config_snapshot: ConfigSnapshot
    store: FrylerStore
    identity: IdentityFiles
    outbox: Outbox
    claude: ClaudeClient
    heartbeat: HeartbeatLoop


def build_context(config: AppConfig, snapshot: ConfigSnapshot) -> AppContext:
    """Wire the components. The store opens lazily on first use."""
    store = FrylerStore(config.paths.db_path)
    identity = IdentityFiles(config.paths.identity_dir)
    outbox = Outbox(config.paths.outbox_dir)
    claude = ClaudeClient(config, identity_provider=identity.get_identity_context)
    heartbeat = HeartbeatLoop(
        interval_seconds=config.heartbeat.interval_seconds,
        tick_fn=lambda: run_heartbeat_tick(store, claude, identity, outbox),
    )
    return AppContext(
        config=config,
        config_snapshot=snapshot,
        store=store,
        identity=identity,
        outbox=outbox,
        claude=claude,
        heartbeat=heartbeat,
    )
