"""
Environment configuration for the provisioning service.
Handles all environment variable parsing and validation.
"""

import os
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from log import init_logger

logger = init_logger(__name__)

VALID_LOG_LEVELS = ["critical", "error", "warning", "info", "debug", "trace"]
VALID_DNS_PROVIDERS = ["route53", "cloudflare"]

REGISTRANT_FIELDS = {
    "first_name": "REGISTRANT_FIRST_NAME",
    "last_name": "REGISTRANT_LAST_NAME",
    "email": "REGISTRANT_EMAIL",
    "phone_number": "REGISTRANT_PHONE_NUMBER",
    "address_line_1": "REGISTRANT_ADDRESS_LINE_1",
    "city": "REGISTRANT_CITY",
    "country_code": "REGISTRANT_COUNTRY_CODE",
    "zip_code": "REGISTRANT_ZIP_CODE",
    "contact_type": "REGISTRANT_CONTACT_TYPE",
}


@dataclass
class ProvisioningConfig:
    """Provisioning service configuration loaded from environment variables."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"

    # Provider settings
    aws_region: str = "us-east-1"
    dns_provider: str = "route53"
    cloudflare_api_token: Optional[str] = None
    cloudflare_account_id: Optional[str] = None
    default_availability_zones: List[str] = field(
        default_factory=lambda: ["us-east-1a", "us-east-1f"]
    )

    # Workflow timing
    poll_interval_seconds: float = 5.0
    collaborator_timeout_seconds: float = 30.0
    cert_validation_max_attempts: int = 30
    cert_validation_delay_seconds: float = 2.0
    cert_validation_timeout_seconds: float = 120.0

    # Registration settings
    auto_renew: bool = True
    duration_years: int = 1
    registrant_contact: Dict[str, str] = field(default_factory=dict)

    # Storage and caching
    store_path: Optional[str] = None
    tld_price_cache_ttl_seconds: float = 3600

    # Admin settings
    admin_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ProvisioningConfig":
        """Load configuration from environment variables."""
        return cls(
            # Server settings
            host=os.getenv("PROVISIONING_HOST", "0.0.0.0"),
            port=int(os.getenv("PROVISIONING_PORT", "8080")),
            log_level=os.getenv("PROVISIONING_LOG_LEVEL", "info").lower(),
            # Provider settings
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            dns_provider=os.getenv("DNS_PROVIDER", "route53").lower(),
            cloudflare_api_token=os.getenv("CLOUDFLARE_API_TOKEN"),
            cloudflare_account_id=os.getenv("CLOUDFLARE_ACCOUNT_ID"),
            default_availability_zones=cls._parse_list(
                os.getenv("DEFAULT_AVAILABILITY_ZONES", "us-east-1a,us-east-1f")
            ),
            # Workflow timing
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "5")),
            collaborator_timeout_seconds=float(
                os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "30")
            ),
            cert_validation_max_attempts=int(
                os.getenv("CERT_VALIDATION_MAX_ATTEMPTS", "30")
            ),
            cert_validation_delay_seconds=float(
                os.getenv("CERT_VALIDATION_DELAY_SECONDS", "2")
            ),
            cert_validation_timeout_seconds=float(
                os.getenv("CERT_VALIDATION_TIMEOUT_SECONDS", "120")
            ),
            # Registration settings
            auto_renew=os.getenv("DOMAIN_AUTO_RENEW", "true").lower() == "true",
            duration_years=int(os.getenv("DOMAIN_DURATION_YEARS", "1")),
            registrant_contact=cls._parse_contact(),
            # Storage and caching
            store_path=os.getenv("PROVISIONING_STORE_PATH") or None,
            tld_price_cache_ttl_seconds=float(
                os.getenv("TLD_PRICE_CACHE_TTL_SECONDS", "3600")
            ),
            # Admin settings
            admin_token=os.getenv("ADMIN_TOKEN"),
        )

    @staticmethod
    def _parse_list(value: str) -> List[str]:
        """Parse a comma-separated environment variable."""
        if not value:
            return []
        return [item.strip() for item in value.split(",") if item.strip()]

    @staticmethod
    def _parse_contact() -> Dict[str, str]:
        contact = {}
        for key, env_name in REGISTRANT_FIELDS.items():
            value = os.getenv(env_name)
            if value:
                contact[key] = value
        contact.setdefault("contact_type", "PERSON")
        return contact

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.port < 1 or self.port > 65535:
            errors.append("PROVISIONING_PORT must be between 1 and 65535")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(
                f"PROVISIONING_LOG_LEVEL must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )

        if self.dns_provider not in VALID_DNS_PROVIDERS:
            errors.append(
                f"DNS_PROVIDER must be one of: {', '.join(VALID_DNS_PROVIDERS)}"
            )
        elif self.dns_provider == "cloudflare":
            if not self.cloudflare_api_token:
                errors.append(
                    "CLOUDFLARE_API_TOKEN is required when DNS_PROVIDER is 'cloudflare'"
                )
            elif len(self.cloudflare_api_token) < 10:
                errors.append("CLOUDFLARE_API_TOKEN appears to be invalid (too short)")

        if not self.default_availability_zones:
            errors.append("DEFAULT_AVAILABILITY_ZONES must list at least one zone")

        if self.poll_interval_seconds <= 0:
            errors.append("POLL_INTERVAL_SECONDS must be positive")

        if self.collaborator_timeout_seconds <= 0:
            errors.append("COLLABORATOR_TIMEOUT_SECONDS must be positive")

        if self.cert_validation_max_attempts < 1:
            errors.append("CERT_VALIDATION_MAX_ATTEMPTS must be at least 1")

        if self.cert_validation_delay_seconds < 0:
            errors.append("CERT_VALIDATION_DELAY_SECONDS must not be negative")

        if self.cert_validation_timeout_seconds <= 0:
            errors.append("CERT_VALIDATION_TIMEOUT_SECONDS must be positive")

        if self.duration_years < 1 or self.duration_years > 10:
            errors.append("DOMAIN_DURATION_YEARS must be between 1 and 10")

        if self.tld_price_cache_ttl_seconds < 0:
            errors.append("TLD_PRICE_CACHE_TTL_SECONDS must not be negative")

        return errors

    def log_configuration(self):
        """Log the current configuration (without sensitive data)."""
        logger.info("Provisioning configuration loaded from environment variables:")
        logger.info(f"  Host: {self.host}")
        logger.info(f"  Port: {self.port}")
        logger.info(f"  Log Level: {self.log_level}")
        logger.info(f"  AWS Region: {self.aws_region}")
        logger.info(f"  DNS Provider: {self.dns_provider}")
        logger.info(f"  Poll Interval: {self.poll_interval_seconds}s")
        logger.info(
            f"  Certificate Validation: {self.cert_validation_max_attempts} attempts, "
            f"{self.cert_validation_delay_seconds}s apart, "
            f"{self.cert_validation_timeout_seconds}s overall timeout"
        )
        logger.info(f"  Store: {self.store_path or 'in-memory'}")
        if self.admin_token:
            logger.info("  Admin Token: Configured")
        if self.cloudflare_api_token:
            logger.info("  Cloudflare API Token: Configured")


def load_config_from_env() -> ProvisioningConfig:
    """Load and validate provisioning configuration from environment variables."""
    config = ProvisioningConfig.from_env()

    errors = config.validate()
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    config.log_configuration()

    return config
