# Copyright 2024-2025 The vLLM Production Stack Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import argparse
from typing import List, Optional

from env_config import VALID_DNS_PROVIDERS, VALID_LOG_LEVELS, ProvisioningConfig
from log import init_logger
from version import __version__

logger = init_logger(__name__)


# --- Argument Parsing and Initialization ---
def validate_args(args: argparse.Namespace) -> None:
    errors = args.config_obj.validate()
    if errors:
        for error in errors:
            logger.error(f"  - {error}")
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the domain provisioning service. Configuration is loaded from environment variables."
    )

    # Basic server settings (override environment variables)
    server_group = parser.add_argument_group(
        "Server Settings", "Basic server configuration (overrides environment variables)"
    )
    server_group.add_argument(
        "--host", type=str, default=None, help="The host to run the server on."
    )
    server_group.add_argument(
        "--port", type=int, default=None, help="The port to run the server on."
    )
    server_group.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=VALID_LOG_LEVELS,
        help="Log level for the service and uvicorn.",
    )

    # Provisioning options
    provisioning_group = parser.add_argument_group(
        "Provisioning Options", "Provisioning configuration (overrides environment variables)"
    )
    provisioning_group.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between registration status polls.",
    )
    provisioning_group.add_argument(
        "--store-path",
        type=str,
        default=None,
        help="JSON file the operations are persisted to. In-memory if unset.",
    )
    provisioning_group.add_argument(
        "--dns-provider",
        type=str,
        choices=VALID_DNS_PROVIDERS,
        default=None,
        help="Provider managing hosted zones and records.",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version and exit",
    )

    args = parser.parse_args(argv)

    # Load configuration from environment variables
    logger.info("Loading configuration from environment variables")
    config = ProvisioningConfig.from_env()

    # Override config with command line arguments if provided
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.poll_interval is not None:
        config.poll_interval_seconds = args.poll_interval
    if args.store_path is not None:
        config.store_path = args.store_path
    if args.dns_provider is not None:
        config.dns_provider = args.dns_provider

    # Store the config object for use by the application
    args.config_obj = config

    validate_args(args)
    return args
