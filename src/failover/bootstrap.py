"""Bootstrap and dependency wiring for the failover sentinel.

This module is the composition root. It:
- Loads configuration and applies CLI overrides
- Sets up logging
- Opens the state store and marks the process start
- Creates the prober, rule client, decision engine and scheduler

Configuration errors and an unreadable state store abort startup; nothing
is probed or toggled until every required setting is present.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from typing import Any

from failover.config import Config, load_config
from failover.engine import FailoverEngine
from failover.exceptions import ConfigValidationError, StoreUnavailableError
from failover.logging import get_logger, setup_logging
from failover.prober import HttpProber, Prober
from failover.rule_client import CloudflareRuleClient
from failover.scheduler import CycleDispatcher, CycleScheduler
from failover.store import JsonFileStateBackend, MonitorStateStore

logger = get_logger(__name__)


class BootstrapContext:
    """Container for all bootstrapped dependencies."""

    def __init__(
        self,
        config: Config,
        store: MonitorStateStore,
        prober: Prober,
        rule_client: CloudflareRuleClient,
        engine: FailoverEngine,
        dispatcher: CycleDispatcher,
        scheduler: CycleScheduler,
    ) -> None:
        """Initialize the bootstrap context.

        Args:
            config: Application configuration.
            store: The opened state store.
            prober: Health prober for the monitored URL.
            rule_client: Cloudflare rule client.
            engine: Decision engine.
            dispatcher: Thread pool running decision cycles.
            scheduler: Timer that fires decision cycles.
        """
        self.config = config
        self.store = store
        self.prober = prober
        self.rule_client = rule_client
        self.engine = engine
        self.dispatcher = dispatcher
        self.scheduler = scheduler

    def close(self) -> None:
        """Release the HTTP client and the store worker."""
        self.rule_client.close()
        self.store.close()


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Args:
        config: Base configuration loaded from environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    overrides: dict[str, Any] = {}

    if parsed.interval:
        overrides["poll_interval"] = parsed.interval
    if parsed.log_level:
        overrides["log_level"] = parsed.log_level
    if parsed.state_file:
        overrides["state_file"] = parsed.state_file
    if parsed.port:
        overrides["api_port"] = parsed.port

    if overrides:
        return replace(config, **overrides)
    return config


def create_rule_client(config: Config) -> CloudflareRuleClient:
    """Create the Cloudflare rule client from configuration."""
    if config.redirect_ruleset_id:
        logger.info(
            "Toggling rule %s inside ruleset %s",
            config.redirect_rule_id,
            config.redirect_ruleset_id,
        )
    else:
        logger.info(
            "No REDIRECT_RULESET_ID set; toggling every rule in ruleset %s",
            config.redirect_rule_id,
        )
    return CloudflareRuleClient(
        api_token=config.cloudflare_api_token,
        zone_id=config.zone_id,
        ruleset_id=config.redirect_ruleset_id or None,
        base_url=config.cloudflare_api_base_url,
    )


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext | None:
    """Bootstrap the application with all dependencies.

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with all initialized dependencies, or None if
        initialization failed (invalid configuration or unusable store).
    """
    try:
        config = load_config(parsed.env_file)
    except ConfigValidationError as e:
        setup_logging()
        for error in e.errors:
            logger.error("Configuration error: %s", error)
        logger.error("Refusing to start with invalid configuration")
        return None
    config = apply_cli_overrides(config, parsed)

    setup_logging(config.log_level, json_format=config.log_json)
    logger.info("Monitoring %s every %ss", config.monitor_url, config.poll_interval)
    logger.info(
        "Thresholds: failover after %d failures, recovery after %d successes",
        config.failure_threshold,
        config.recovery_threshold,
    )

    store = MonitorStateStore(
        JsonFileStateBackend(config.state_file),
        operation_timeout=config.store_operation_timeout,
    )
    try:
        store.initialize()
    except StoreUnavailableError as e:
        logger.error(
            "Failed to open state store: %s", e,
            extra={"state_file": str(config.state_file)},
        )
        store.close()
        return None
    logger.info("Using state file %s", config.state_file)

    prober = HttpProber()
    rule_client = create_rule_client(config)
    engine = FailoverEngine(config, store, prober, rule_client)
    dispatcher = CycleDispatcher(config.max_concurrent_cycles)
    scheduler = CycleScheduler(engine, dispatcher, interval=config.poll_interval)

    return BootstrapContext(
        config=config,
        store=store,
        prober=prober,
        rule_client=rule_client,
        engine=engine,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
    "create_rule_client",
]
