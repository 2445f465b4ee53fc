"""Configuration models using Pydantic for validation."""
from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os


class ServerConfig(BaseModel):
    """A Jolokia agent to poll."""
    model_config = ConfigDict(frozen=True)

    name: str
    host: str
    port: str
    username: Optional[str] = None
    password: Optional[str] = None

    @field_validator('port', mode='before')
    @classmethod
    def coerce_port(cls, v):
        """Accept ports written as YAML integers."""
        if isinstance(v, int):
            return str(v)
        return v


class MetricConfig(BaseModel):
    """A JMX path to read on every server."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    jmx: str
    multiple_mbeans: bool = Field(False, alias="MultipleMBeans")
    series_name_override: Optional[str] = Field(None, alias="SeriesNameOverride")


class JolokiaConfig(BaseModel):
    """Servers and metrics polled on every sweep."""
    context: str = "/jolokia/read"
    scheme: Literal["http", "https"] = "http"
    timeout_s: float = 5.0
    servers: List[ServerConfig] = Field(default_factory=list)
    metrics: List[MetricConfig] = Field(default_factory=list)

    @field_validator('metrics')
    @classmethod
    def validate_metrics(cls, v):
        """Validate metric configurations."""
        if not v:
            raise ValueError("At least one metric must be defined")

        names = [m.name for m in v]
        if len(names) != len(set(names)):
            raise ValueError("Metric names must be unique")

        return v

    @field_validator('servers')
    @classmethod
    def validate_servers(cls, v):
        """Validate server configurations."""
        names = [s.name for s in v]
        if len(names) != len(set(names)):
            raise ValueError("Server names must be unique")
        return v


class PrometheusExporterConfig(BaseModel):
    """Prometheus pull exporter configuration."""
    enabled: bool = True
    port: int = 9404
    prefix: str = ""
    bind_address: str = "0.0.0.0"


class OTELExporterConfig(BaseModel):
    """OpenTelemetry push exporter configuration."""
    enabled: bool = False
    endpoint: str = "localhost:4317"
    insecure: bool = True
    prefix: str = ""
    export_interval_s: int = 10
    headers: Dict[str, str] = Field(default_factory=dict)
    resource: Dict[str, str] = Field(default_factory=dict)


class ExportersConfig(BaseModel):
    """Configuration for all exporters."""
    prometheus: PrometheusExporterConfig = Field(default_factory=PrometheusExporterConfig)
    otel: OTELExporterConfig = Field(default_factory=OTELExporterConfig)


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_host: str = "0.0.0.0"
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    jolokia: JolokiaConfig
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)

    @model_validator(mode='after')
    def validate_context(self):
        """Ensure the context root composes into a valid URL path."""
        if not self.jolokia.context.startswith("/"):
            raise ValueError(f"Jolokia context '{self.jolokia.context}' must start with '/'")
        return self


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_endpoint := os.getenv('OTEL_ENDPOINT'):
        raw_config.setdefault('exporters', {}).setdefault('otel', {})['endpoint'] = env_endpoint

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    if env_context := os.getenv('JOLOKIA_CONTEXT'):
        raw_config.setdefault('jolokia', {})['context'] = env_context

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
