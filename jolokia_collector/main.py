"""Main entry point for the Jolokia collector."""
import argparse
import logging
import signal
import sys

from jolokia_collector.config import Config, load_config
from jolokia_collector.control_api import ControlAPI
from jolokia_collector.engine import JolokiaEngine
from jolokia_collector.sinks import LogSink, MultiSink


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        fmt = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_engine(config: Config, once: bool = False):
    """Create the engine and its sinks. Returns (engine, otel_sink)."""
    logger = logging.getLogger(__name__)
    sinks = []
    self_metrics = None
    otel_self_metrics = None
    otel_sink = None

    if once:
        sinks.append(LogSink())
    else:
        if config.exporters.prometheus.enabled:
            from jolokia_collector.prom_exporter import PrometheusSink, SelfMetrics

            prom_sink = PrometheusSink(config.exporters.prometheus)
            self_metrics = SelfMetrics(
                registry=prom_sink.registry,
                prefix=config.exporters.prometheus.prefix
            )
            sinks.append(prom_sink)
            logger.info("Prometheus exporter initialized")
        else:
            logger.info("Prometheus exporter disabled")

        if config.exporters.otel.enabled:
            from jolokia_collector.otel_exporter import OTELSink, OTELSelfMetrics

            otel_sink = OTELSink(config.exporters.otel)
            otel_self_metrics = OTELSelfMetrics(
                meter=otel_sink.meter,
                prefix=config.exporters.otel.prefix
            )
            sinks.append(otel_sink)
            logger.info("OTEL exporter initialized")
        else:
            logger.info("OTEL exporter disabled")

    engine = JolokiaEngine(
        config.jolokia,
        sink=MultiSink(sinks),
        self_metrics=self_metrics,
        otel_self_metrics=otel_self_metrics
    )
    return engine, otel_sink


def main(argv=None):
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Jolokia Collector - Read JMX metrics through Jolokia"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep, log the measurements and exit"
    )

    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Context root: {config.jolokia.context}")
    logger.info(f"Servers configured: {len(config.jolokia.servers)}")
    logger.info(f"Metrics configured: {len(config.jolokia.metrics)}")

    try:
        engine, otel_sink = build_engine(config, once=args.once)
    except Exception as e:
        logger.error(f"Failed to initialize engine: {e}", exc_info=True)
        sys.exit(1)

    def shutdown():
        engine.close()
        if otel_sink:
            otel_sink.shutdown()

    if args.once:
        result = engine.sweep()
        shutdown()
        sys.exit(0 if result.ok else 2)

    control_api = ControlAPI(engine)

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run control API (blocking)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host=config.global_.control_api_host,
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        shutdown()
        sys.exit(1)


if __name__ == "__main__":
    main()
