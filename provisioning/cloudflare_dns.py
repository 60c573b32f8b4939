"""
Cloudflare implementation of the DNS zone manager.
Handles zone lookup and record management through the Cloudflare v4 API.
"""

import json
from typing import Any, Dict, List, Optional

import requests

from log import init_logger
from provisioning.collaborators import (
    NOT_FOUND_CODE,
    DnsZoneManager,
    Response,
    failure,
    success,
)
from provisioning.models import DnsRecord

logger = init_logger(__name__)

# ttl=1 is "automatic" for Cloudflare
AUTOMATIC_TTL = 1


class CloudflareZoneManager(DnsZoneManager):
    """Cloudflare zone manager. Alias A records are written as flattened CNAMEs."""

    def __init__(
        self,
        api_token: str,
        account_id: Optional[str] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize Cloudflare zone manager.

        Args:
            api_token: Cloudflare API token
            account_id: Account that new zones are created in
            timeout: Per-request timeout in seconds
        """
        self.api_token = api_token
        self.account_id = account_id
        self.timeout = timeout
        self.base_url = "https://api.cloudflare.com/client/v4"
        self.headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _make_request(
        self, method: str, endpoint: str, data: Optional[Dict] = None
    ) -> Response:
        """Make a request to the Cloudflare API with error handling."""
        url = f"{self.base_url}/{endpoint}"
        try:
            if method.upper() == "GET":
                response = requests.get(url, headers=self.headers, timeout=self.timeout)
            elif method.upper() == "POST":
                response = requests.post(
                    url, headers=self.headers, json=data, timeout=self.timeout
                )
            elif method.upper() == "DELETE":
                response = requests.delete(url, headers=self.headers, timeout=self.timeout)
            elif method.upper() == "PUT":
                response = requests.put(
                    url, headers=self.headers, json=data, timeout=self.timeout
                )
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            if response.status_code == 404:
                return failure(f"{endpoint} not found", NOT_FOUND_CODE)
            response.raise_for_status()
            result = response.json()

            if not result.get("success", False):
                errors = result.get("errors", [])
                error_msg = "\n".join(
                    [
                        f"Code: {e.get('code')}, Message: {e.get('message')}"
                        for e in errors
                    ]
                )
                logger.error(f"API Error: {error_msg}")
                if data:
                    logger.debug(f"Request data: {json.dumps(data)}")
                return {"success": False, "errors": errors}

            return result
        except requests.exceptions.RequestException as e:
            logger.error(f"Request Error: {str(e)}")
            if data:
                logger.debug(f"Request data: {json.dumps(data)}")
            return failure(str(e))
        except json.JSONDecodeError:
            logger.error("JSON Decode Error: Could not parse response")
            return failure("Could not parse response")

    def _get_paginated(self, endpoint: str) -> Response:
        """Collect every page of a list endpoint."""
        items: List[Dict[str, Any]] = []
        separator = "&" if "?" in endpoint else "?"
        page = 1
        total_pages = 1

        while page <= total_pages:
            result = self._make_request("GET", f"{endpoint}{separator}page={page}")
            if not result.get("success", False):
                return result

            items.extend(result.get("result") or [])
            result_info = result.get("result_info") or {}
            total_pages = result_info.get("total_pages", total_pages)
            page += 1

        return success(items)

    def get_zone_by_domain(self, domain_name: str) -> Response:
        """Find the zone for a domain, preferring the longest matching zone name."""
        result = self._get_paginated("zones")
        if not result["success"]:
            return result

        best: Optional[Dict[str, Any]] = None
        for zone in result["result"]:
            zone_name = zone.get("name", "")
            # Exact match - return immediately
            if domain_name == zone_name:
                return success({"id": zone.get("id"), "name": zone_name})
            if domain_name.endswith(f".{zone_name}") and (
                best is None or len(zone_name) > len(best["name"])
            ):
                best = {"id": zone.get("id"), "name": zone_name}

        if best is None:
            logger.info(f"No Cloudflare zone found for domain: {domain_name}")
        else:
            logger.info(f"Found zone ID {best['id']} for domain {domain_name} (zone: {best['name']})")
        return success(best)

    def create_zone(self, domain_name: str) -> Response:
        data: Dict[str, Any] = {"name": domain_name, "type": "full"}
        if self.account_id:
            data["account"] = {"id": self.account_id}

        result = self._make_request("POST", "zones", data)
        if not result.get("success", False):
            return result

        zone = result.get("result") or {}
        logger.info(f"Created Cloudflare zone {zone.get('id')} for {domain_name}")
        return success({"id": zone.get("id"), "name": zone.get("name", domain_name)})

    def list_records(self, zone_id: str) -> Response:
        result = self._get_paginated(f"zones/{zone_id}/dns_records")
        if not result["success"]:
            return result

        return success(
            [
                DnsRecord(
                    name=record.get("name", ""),
                    type=record.get("type", ""),
                    ttl=record.get("ttl"),
                    values=[record["content"]] if record.get("content") else [],
                )
                for record in result["result"]
            ]
        )

    def upsert_record(self, zone_id: str, record: DnsRecord) -> Response:
        record_data = self._to_record_data(record)
        if record_data is None:
            logger.info(
                f"Skipping {record.type} alias record for {record.name}, "
                "Cloudflare has no alias for it"
            )
            return success(None)

        existing = self._find_record_ids(zone_id, record_data["name"], record_data["type"])
        if not existing["success"]:
            return existing

        if existing["result"]:
            record_id = existing["result"][0]
            result = self._make_request(
                "PUT", f"zones/{zone_id}/dns_records/{record_id}", record_data
            )
        else:
            result = self._make_request("POST", f"zones/{zone_id}/dns_records", record_data)

        if not result.get("success", False):
            logger.error(f"Failed to write {record_data['type']} record for {record.name}")
            return result

        record_id = (result.get("result") or {}).get("id")
        logger.info(f"Wrote {record_data['type']} record {record_id} for {record.name}")
        return success(None)

    def delete_record(self, zone_id: str, record: DnsRecord) -> Response:
        name = record.name.rstrip(".")
        existing = self._find_record_ids(zone_id, name, record.type)
        if not existing["success"]:
            return existing

        for record_id in existing["result"]:
            logger.debug(f"Deleting {record.type} record {record_id} for {name}")
            result = self._make_request("DELETE", f"zones/{zone_id}/dns_records/{record_id}")
            if not result.get("success", False):
                return result
        return success(None)

    def _find_record_ids(self, zone_id: str, name: str, record_type: str) -> Response:
        result = self._make_request(
            "GET", f"zones/{zone_id}/dns_records?name={name}&type={record_type}"
        )
        if not result.get("success", False):
            return result
        return success([r.get("id") for r in result.get("result") or [] if r.get("id")])

    @staticmethod
    def _to_record_data(record: DnsRecord) -> Optional[Dict[str, Any]]:
        name = record.name.rstrip(".")
        if record.alias:
            if record.type != "A":
                return None
            return {
                "name": name,
                "type": "CNAME",
                "content": record.alias.dns_name.rstrip("."),
                "ttl": AUTOMATIC_TTL,
                "proxied": False,
            }
        return {
            "name": name,
            "type": record.type,
            "content": record.values[0].rstrip(".") if record.values else "",
            "ttl": record.ttl or AUTOMATIC_TTL,
            "proxied": False,
        }
