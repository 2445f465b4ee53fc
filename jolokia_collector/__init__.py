"""Read JMX metrics through Jolokia."""

__version__ = "0.1.0"
