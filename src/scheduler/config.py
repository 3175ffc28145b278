"""
Environment-derived scheduling configuration and pipeline definitions.

Everything is read once, when the managers are constructed.
"""

import os
from typing import Dict, List, Mapping, Optional

from shared.schemas.pipeline import (
    DataSource,
    FallbackConfig,
    FeatureFlags,
    MonitoringConfig,
    NotificationConfig,
    PipelineConfig,
    PipelineConfiguration,
    QuotaConfig,
    ReliabilityMetrics,
    SchedulingConfig,
    SourceConfig,
    ThrottlingConfig,
    ValidationConfig,
)
from shared.utils.configs import api_configs, base_configs
from shared.utils.logger import logger
from shared.utils.types import DataSourceProvider, DataType, Environment, UpdateFrequency

# Per environment: (global timeout in seconds, max concurrent pipelines)
ENVIRONMENT_DEFAULTS: Dict[str, tuple] = {
    Environment.DEVELOPMENT.value: (5 * 60, 1),
    Environment.STAGING.value: (15 * 60, 2),
    Environment.PRODUCTION.value: (60 * 60, 3),
}

PIPELINE_FREQUENCIES: Dict[DataType, UpdateFrequency] = {
    DataType.ADDRESSES: UpdateFrequency.BIANNUAL,
    DataType.DOG_PLACES: UpdateFrequency.WEEKLY,
}


def _enabled_unless_false(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").lower() != "false"


def _enabled_if_true(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None:
        return default
    return value.lower() == "true"


class SchedulingConfigManager:
    """Builds the SchedulingConfig from environment variables."""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self.env = os.environ if env is None else env
        self.config = self._load()

    def _environment(self) -> str:
        name = self.env.get("APP_ENV", base_configs["environment"]).lower()
        if name not in ENVIRONMENT_DEFAULTS:
            logger.warning(f"Unknown APP_ENV '{name}', falling back to development")
            return Environment.DEVELOPMENT.value
        return name

    def _enabled_pipelines(self) -> List[DataType]:
        raw = self.env.get("ENABLED_PIPELINES", "addresses,dogPlaces")
        pipelines: List[DataType] = []
        for name in (part.strip() for part in raw.split(",")):
            if not name:
                continue
            try:
                pipelines.append(DataType(name))
            except ValueError:
                logger.warning(f"Ignoring unknown pipeline '{name}' in ENABLED_PIPELINES")
        return pipelines

    def _load(self) -> SchedulingConfig:
        environment = self._environment()
        default_timeout, default_concurrency = ENVIRONMENT_DEFAULTS[environment]
        env = self.env
        return SchedulingConfig(
            environment=environment,
            enabled_pipelines=self._enabled_pipelines(),
            global_timeout=float(env.get("GLOBAL_TIMEOUT", default_timeout)),
            max_concurrent_pipelines=int(
                env.get("MAX_CONCURRENT_PIPELINES", default_concurrency)
            ),
            monitoring=MonitoringConfig(
                enable_metrics=_enabled_unless_false(env, "ENABLE_METRICS"),
                enable_logs=_enabled_unless_false(env, "ENABLE_LOGS"),
                log_level=env.get("LOG_LEVEL", "info").lower(),
                metrics_retention_days=int(env.get("METRICS_RETENTION", 30)),
            ),
            notifications=NotificationConfig(
                enable_slack=_enabled_if_true(env, "ENABLE_SLACK_NOTIFICATIONS"),
                enable_email=_enabled_if_true(env, "ENABLE_EMAIL_NOTIFICATIONS"),
                slack_webhook_url=env.get("SLACK_WEBHOOK_URL"),
                email_recipients=[
                    r.strip() for r in env.get("EMAIL_RECIPIENTS", "").split(",") if r.strip()
                ],
                notify_on_success=_enabled_if_true(env, "NOTIFY_ON_SUCCESS"),
                notify_on_failure=_enabled_if_true(env, "NOTIFY_ON_FAILURE", default=True),
                notify_on_quota_warning=_enabled_if_true(
                    env, "NOTIFY_ON_QUOTA_WARNING", default=True
                ),
            ),
            features=FeatureFlags(
                enable_urbis=_enabled_unless_false(env, "ENABLE_URBIS"),
                enable_osm=_enabled_unless_false(env, "ENABLE_OSM"),
                enable_google=_enabled_unless_false(env, "ENABLE_GOOGLE"),
                enable_foursquare=_enabled_unless_false(env, "ENABLE_FOURSQUARE"),
                enable_fallback=_enabled_unless_false(env, "ENABLE_FALLBACK"),
                enable_validation=_enabled_unless_false(env, "ENABLE_VALIDATION"),
                enable_deduplication=_enabled_unless_false(env, "ENABLE_DEDUPLICATION"),
            ),
        )

    def is_pipeline_enabled(self, data_type: DataType) -> bool:
        return data_type in self.config.enabled_pipelines

    @property
    def is_production(self) -> bool:
        return self.config.environment == Environment.PRODUCTION.value


class DataSourceConfigManager:
    """
    Builds the candidate sources of each pipeline from API keys, quotas and
    feature flags.
    """

    def __init__(self, scheduling: SchedulingConfig, env: Optional[Mapping[str, str]] = None):
        self.env = os.environ if env is None else env
        self.scheduling = scheduling

    def _google_source(self, data_type: DataType) -> Optional[DataSource]:
        api_key = self.env.get("GOOGLE_PLACES_API_KEY")
        if not api_key:
            return None
        production = self.scheduling.environment == Environment.PRODUCTION.value
        return DataSource(
            id=f"google_{data_type.value}",
            name="Google Places API",
            provider=DataSourceProvider.GOOGLE,
            priority=1,
            is_active=self.scheduling.features.enable_google,
            quota=QuotaConfig(
                daily=int(self.env.get("GOOGLE_DAILY_QUOTA", 1000)),
                monthly=int(self.env.get("GOOGLE_MONTHLY_QUOTA", 30000)),
                warning_threshold=80,
            ),
            reliability=ReliabilityMetrics(
                score=95, uptime=99.5, avg_response_time=0.2, error_rate=0.5
            ),
            config=SourceConfig(
                base_url=self.env.get("GOOGLE_BASE_URL", api_configs["google_base_url"]),
                api_key=api_key,
                timeout=10,
                rate_limit=2 if production else 5,
            ),
        )

    def _osm_source(self, data_type: DataType) -> DataSource:
        addresses = data_type == DataType.ADDRESSES
        return DataSource(
            id=f"osm_{data_type.value}",
            name="OpenStreetMap Overpass API",
            provider=DataSourceProvider.OSM,
            priority=3,
            is_active=self.scheduling.features.enable_osm,
            quota=QuotaConfig(
                daily=100000 if addresses else 50000,
                monthly=3000000 if addresses else 1500000,
                warning_threshold=95,
            ),
            reliability=ReliabilityMetrics(
                score=92 if addresses else 90,
                uptime=99.1 if addresses else 98.8,
                avg_response_time=0.3 if addresses else 0.35,
                error_rate=0.9 if addresses else 1.2,
            ),
            config=SourceConfig(
                base_url=self.env.get("OVERPASS_API_URL", api_configs["overpass_api_url"]),
                timeout=8 if addresses else 10,
                rate_limit=1,
                headers={"User-Agent": "DogPlacesBrussels/1.0"},
            ),
        )

    def get_address_sources(self) -> List[DataSource]:
        sources: List[DataSource] = []
        google = self._google_source(DataType.ADDRESSES)
        if google:
            sources.append(google)

        # URBIS is only reachable from staging and production deployments
        if self.scheduling.environment != Environment.DEVELOPMENT.value:
            sources.append(
                DataSource(
                    id="urbis_addresses",
                    name="URBIS Brussels Address Register",
                    provider=DataSourceProvider.URBIS,
                    priority=2,
                    is_active=self.scheduling.features.enable_urbis
                    and _enabled_if_true(self.env, "ENABLE_URBIS"),
                    quota=QuotaConfig(daily=10000, monthly=300000, warning_threshold=90),
                    reliability=ReliabilityMetrics(
                        score=88, uptime=97.8, avg_response_time=0.5, error_rate=2.2
                    ),
                    config=SourceConfig(
                        base_url=self.env.get("URBIS_API_URL", api_configs["urbis_api_url"]),
                        timeout=15,
                        rate_limit=1,
                    ),
                )
            )

        sources.append(self._osm_source(DataType.ADDRESSES))
        sources.append(
            DataSource(
                id="manual_addresses",
                name="Static Brussels address list",
                provider=DataSourceProvider.MANUAL,
                priority=4,
                is_active=self.scheduling.features.enable_fallback,
                quota=QuotaConfig(daily=1000000, monthly=30000000, warning_threshold=100),
                reliability=ReliabilityMetrics(),
                config=SourceConfig(timeout=0, rate_limit=0),
            )
        )
        return sources

    def get_dog_place_sources(self) -> List[DataSource]:
        sources: List[DataSource] = []
        google = self._google_source(DataType.DOG_PLACES)
        if google:
            sources.append(google)

        api_key = self.env.get("FOURSQUARE_API_KEY")
        if api_key:
            sources.append(
                DataSource(
                    id="foursquare_dogPlaces",
                    name="Foursquare Places API",
                    provider=DataSourceProvider.FOURSQUARE,
                    priority=2,
                    is_active=self.scheduling.features.enable_foursquare
                    and _enabled_if_true(self.env, "ENABLE_FOURSQUARE"),
                    quota=QuotaConfig(
                        daily=int(self.env.get("FOURSQUARE_DAILY_QUOTA", 500)),
                        monthly=int(self.env.get("FOURSQUARE_MONTHLY_QUOTA", 15000)),
                        warning_threshold=85,
                    ),
                    reliability=ReliabilityMetrics(
                        score=87, uptime=98.2, avg_response_time=0.4, error_rate=1.8
                    ),
                    config=SourceConfig(
                        base_url=self.env.get(
                            "FOURSQUARE_BASE_URL", api_configs["foursquare_base_url"]
                        ),
                        api_key=api_key,
                        timeout=12,
                        rate_limit=3,
                    ),
                )
            )

        sources.append(self._osm_source(DataType.DOG_PLACES))
        return sources


class ConfigurationFactory:
    """Entry point that turns the environment into pipeline configurations."""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self.scheduling_manager = SchedulingConfigManager(env)
        self.source_manager = DataSourceConfigManager(self.scheduling_manager.config, env)

    def create_configuration(self) -> SchedulingConfig:
        return self.scheduling_manager.config

    def _validation_config(
        self, required_fields: List[str], quality_threshold: int
    ) -> ValidationConfig:
        features = self.scheduling_manager.config.features
        return ValidationConfig(
            required_fields=required_fields if features.enable_validation else [],
            geo_validation=features.enable_validation,
            duplicate_detection=features.enable_deduplication,
            quality_threshold=quality_threshold,
        )

    def build_pipeline_configurations(self) -> List[PipelineConfiguration]:
        """
        Build the address and dog-place pipelines that are enabled.

        Returns:
            One PipelineConfiguration per enabled data type
        """
        config = self.scheduling_manager.config
        fallback = FallbackConfig(enabled=config.features.enable_fallback)
        configurations: List[PipelineConfiguration] = []

        if self.scheduling_manager.is_pipeline_enabled(DataType.ADDRESSES):
            configurations.append(
                PipelineConfiguration(
                    id=f"{DataType.ADDRESSES.value}_pipeline",
                    data_type=DataType.ADDRESSES,
                    frequency=PIPELINE_FREQUENCIES[DataType.ADDRESSES],
                    sources=self.source_manager.get_address_sources(),
                    config=PipelineConfig(
                        max_retries=3,
                        timeout=config.global_timeout,
                        batch_size=500,
                        throttling=ThrottlingConfig(
                            requests_per_second=2,
                            requests_per_minute=120,
                            requests_per_hour=7200,
                            burst_limit=10,
                        ),
                        validation=self._validation_config(
                            ["id", "location", "formatted_address"], 80
                        ),
                        fallback=fallback,
                    ),
                )
            )

        if self.scheduling_manager.is_pipeline_enabled(DataType.DOG_PLACES):
            configurations.append(
                PipelineConfiguration(
                    id=f"{DataType.DOG_PLACES.value}_pipeline",
                    data_type=DataType.DOG_PLACES,
                    frequency=PIPELINE_FREQUENCIES[DataType.DOG_PLACES],
                    sources=self.source_manager.get_dog_place_sources(),
                    config=PipelineConfig(
                        max_retries=5,
                        timeout=config.global_timeout,
                        batch_size=200,
                        throttling=ThrottlingConfig(
                            requests_per_second=1,
                            requests_per_minute=60,
                            requests_per_hour=3600,
                            burst_limit=5,
                        ),
                        validation=self._validation_config(
                            ["id", "name", "location", "place_type"], 85
                        ),
                        fallback=fallback,
                    ),
                )
            )

        return configurations
