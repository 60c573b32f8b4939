"""
AWS implementations of the provisioning collaborators.
Route 53 Domains, ACM, Route 53, EC2 and ELBv2 through boto3.
"""

import uuid
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from log import init_logger
from provisioning.cloudflare_dns import CloudflareZoneManager
from provisioning.collaborators import (
    NOT_FOUND_CODE,
    CertificateAuthority,
    ComputeDescriptor,
    DnsZoneManager,
    DomainRegistrar,
    LoadBalancerProvisioner,
    Response,
    failure,
    success,
)
from provisioning.models import AliasTarget, DnsRecord

logger = init_logger(__name__)

# Route 53 Domains is only served from us-east-1
DOMAINS_REGION = "us-east-1"

NOT_FOUND_ERROR_CODES = {
    "InvalidInstanceID.NotFound",
    "InvalidInstanceID.Malformed",
    "NoSuchHostedZone",
    "ResourceNotFoundException",
    "TargetGroupNotFound",
    "LoadBalancerNotFound",
}


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


class AwsClient:
    """Wraps a boto3 client so every call returns a response envelope."""

    service_name: str = ""

    def __init__(self, region_name: str, client: Any = None):
        self.region_name = region_name
        self.client = client or boto3.client(
            self.service_name,
            region_name=region_name,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}),
        )

    def _call(self, method: str, **kwargs: Any) -> Response:
        try:
            response = getattr(self.client, method)(**kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "")
            message = error.get("Message", str(e))
            logger.error(f"AWS {self.service_name}.{method} failed: {code}: {message}")
            if code in NOT_FOUND_ERROR_CODES:
                return failure(message, NOT_FOUND_CODE)
            return failure(message, code)
        except BotoCoreError as e:
            logger.error(f"AWS {self.service_name}.{method} failed: {e}")
            return failure(str(e))

        status_code = response.get("ResponseMetadata", {}).get("HTTPStatusCode", 200)
        if status_code not in (200, 201):
            return failure(f"{method} returned status code {status_code}", status_code)
        return success(response)

    def _call_and_map(
        self, method: str, mapper: Callable[[Dict[str, Any]], Any], **kwargs: Any
    ) -> Response:
        response = self._call(method, **kwargs)
        if not response["success"]:
            return response
        return success(mapper(response["result"]))


class Route53DomainsRegistrar(AwsClient, DomainRegistrar):
    service_name = "route53domains"

    def __init__(
        self,
        contact: Dict[str, str],
        auto_renew: bool = True,
        duration_years: int = 1,
        client: Any = None,
    ):
        super().__init__(DOMAINS_REGION, client)
        self.contact = contact
        self.auto_renew = auto_renew
        self.duration_years = duration_years

    def _contact_detail(self) -> Dict[str, str]:
        keys = {
            "first_name": "FirstName",
            "last_name": "LastName",
            "contact_type": "ContactType",
            "address_line_1": "AddressLine1",
            "city": "City",
            "country_code": "CountryCode",
            "zip_code": "ZipCode",
            "phone_number": "PhoneNumber",
            "email": "Email",
        }
        return {aws_key: self.contact[key] for key, aws_key in keys.items() if key in self.contact}

    def register_domain(self, domain_name: str) -> Response:
        contact = self._contact_detail()
        response = self._call_and_map(
            "register_domain",
            lambda r: {"operation_id": r["OperationId"]},
            DomainName=domain_name,
            DurationInYears=self.duration_years,
            AutoRenew=self.auto_renew,
            AdminContact=contact,
            RegistrantContact=contact,
            TechContact=contact,
            PrivacyProtectAdminContact=True,
            PrivacyProtectRegistrantContact=True,
            PrivacyProtectTechContact=True,
        )
        if response["success"]:
            logger.info(
                f"Domain registration request for {domain_name} sent with operation id "
                f"{response['result']['operation_id']}"
            )
        return response

    def get_operation_status(self, external_operation_id: str) -> Response:
        response = self._call_and_map(
            "get_operation_detail",
            lambda r: {"status": r.get("Status"), "message": r.get("Message")},
            OperationId=external_operation_id,
        )
        # unknown operation ids are reported as InvalidInput
        if not response["success"] and any(
            e.get("code") == "InvalidInput" for e in response["errors"]
        ):
            return failure(
                f"Operation {external_operation_id} not found", NOT_FOUND_CODE
            )
        return response

    def check_availability(self, domain_name: str) -> Response:
        return self._call_and_map(
            "check_domain_availability",
            lambda r: {"available": r.get("Availability") == "AVAILABLE"},
            DomainName=domain_name,
        )

    def get_domain_suggestions(self, domain_name: str, count: int) -> Response:
        return self._call_and_map(
            "get_domain_suggestions",
            lambda r: [
                {
                    "domain_name": s["DomainName"],
                    "available": s.get("Availability") == "AVAILABLE",
                }
                for s in r.get("SuggestionsList", [])
            ],
            DomainName=domain_name,
            SuggestionCount=count,
            OnlyAvailable=True,
        )

    def get_tld_price(self, tld: str) -> Response:
        response = self._call("list_prices", Tld=tld)
        if not response["success"]:
            return response

        prices = response["result"].get("Prices", [])
        if not prices:
            return failure(f"No prices listed for {tld}", NOT_FOUND_CODE)
        registration = prices[0].get("RegistrationPrice", {})
        return success(
            {"amount": registration.get("Price"), "currency": registration.get("Currency")}
        )


class AcmCertificateAuthority(AwsClient, CertificateAuthority):
    service_name = "acm"

    def request_certificate(self, domain_name: str) -> Response:
        return self._call_and_map(
            "request_certificate",
            lambda r: {"certificate_arn": r["CertificateArn"]},
            DomainName=domain_name,
            ValidationMethod="DNS",
        )

    def describe_certificate(self, certificate_arn: str) -> Response:
        def mapper(r: Dict[str, Any]) -> Dict[str, Any]:
            certificate = r.get("Certificate", {})
            records = []
            for option in certificate.get("DomainValidationOptions", []):
                record = option.get("ResourceRecord")
                if record:
                    records.append(
                        {
                            "name": record.get("Name"),
                            "value": record.get("Value"),
                            "type": record.get("Type", "CNAME"),
                        }
                    )
            return {"status": certificate.get("Status"), "validation_records": records}

        return self._call_and_map(
            "describe_certificate", mapper, CertificateArn=certificate_arn
        )


class Route53ZoneManager(AwsClient, DnsZoneManager):
    service_name = "route53"

    def get_zone_by_domain(self, domain_name: str) -> Response:
        response = self._call(
            "list_hosted_zones_by_name", DNSName=domain_name, MaxItems="1"
        )
        if not response["success"]:
            return response

        for zone in response["result"].get("HostedZones", []):
            # the listing starts at the name, it can return the next zone
            if zone.get("Name", "").rstrip(".").lower() == domain_name.lower():
                return success({"id": zone["Id"], "name": zone["Name"].rstrip(".")})
        return success(None)

    def create_zone(self, domain_name: str) -> Response:
        logger.info(f"Creating hosted zone for {domain_name}")
        return self._call_and_map(
            "create_hosted_zone",
            lambda r: {
                "id": r["HostedZone"]["Id"],
                "name": r["HostedZone"]["Name"].rstrip("."),
            },
            Name=domain_name,
            CallerReference=str(uuid.uuid4()),
            HostedZoneConfig={"PrivateZone": False},
        )

    def upsert_record(self, zone_id: str, record: DnsRecord) -> Response:
        return self._change(zone_id, "UPSERT", record)

    def delete_record(self, zone_id: str, record: DnsRecord) -> Response:
        return self._change(zone_id, "DELETE", record)

    def list_records(self, zone_id: str) -> Response:
        records: List[DnsRecord] = []
        try:
            paginator = self.client.get_paginator("list_resource_record_sets")
            for page in paginator.paginate(HostedZoneId=zone_id):
                records.extend(
                    self._from_record_set(rs) for rs in page.get("ResourceRecordSets", [])
                )
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "")
            logger.error(f"Failed to list records of hosted zone {zone_id}: {code}")
            return failure(
                error.get("Message", str(e)),
                NOT_FOUND_CODE if code in NOT_FOUND_ERROR_CODES else code,
            )
        except BotoCoreError as e:
            logger.error(f"Failed to list records of hosted zone {zone_id}: {e}")
            return failure(str(e))
        return success(records)

    def _change(self, zone_id: str, action: str, record: DnsRecord) -> Response:
        response = self._call(
            "change_resource_record_sets",
            HostedZoneId=zone_id,
            ChangeBatch={
                "Comment": f"{action} {record.type} record for {record.name}",
                "Changes": [
                    {"Action": action, "ResourceRecordSet": self._to_record_set(record)}
                ],
            },
        )
        if response["success"]:
            logger.info(f"{action} {record.type} record {record.name} in zone {zone_id}")
            return success(None)
        return response

    @staticmethod
    def _to_record_set(record: DnsRecord) -> Dict[str, Any]:
        record_set: Dict[str, Any] = {"Name": _fqdn(record.name), "Type": record.type}
        if record.alias:
            record_set["AliasTarget"] = {
                "DNSName": record.alias.dns_name,
                "HostedZoneId": record.alias.hosted_zone_id,
                "EvaluateTargetHealth": record.alias.evaluate_target_health,
            }
        else:
            record_set["TTL"] = record.ttl if record.ttl is not None else 300
            record_set["ResourceRecords"] = [{"Value": v} for v in record.values]
        return record_set

    @staticmethod
    def _from_record_set(record_set: Dict[str, Any]) -> DnsRecord:
        alias = record_set.get("AliasTarget")
        return DnsRecord(
            name=record_set["Name"].rstrip("."),
            type=record_set["Type"],
            ttl=record_set.get("TTL"),
            values=[r["Value"] for r in record_set.get("ResourceRecords", [])],
            alias=AliasTarget(
                dns_name=alias["DNSName"],
                hosted_zone_id=alias["HostedZoneId"],
                evaluate_target_health=alias.get("EvaluateTargetHealth", False),
            )
            if alias
            else None,
        )


class Ec2ComputeDescriptor(AwsClient, ComputeDescriptor):
    service_name = "ec2"

    def __init__(
        self,
        region_name: str,
        availability_zones: Optional[List[str]] = None,
        client: Any = None,
    ):
        super().__init__(region_name, client)
        self.availability_zones = availability_zones or []

    def describe_instance(self, instance_id: str) -> Response:
        def mapper(r: Dict[str, Any]) -> Dict[str, Any]:
            return {
                "reservations": [
                    {
                        "instances": [
                            {
                                "instance_id": i["InstanceId"],
                                "public_ip": i.get("PublicIpAddress"),
                                "security_group_ids": [
                                    g["GroupId"] for g in i.get("SecurityGroups", [])
                                ],
                            }
                            for i in reservation.get("Instances", [])
                        ]
                    }
                    for reservation in r.get("Reservations", [])
                ]
            }

        return self._call_and_map("describe_instances", mapper, InstanceIds=[instance_id])

    def get_default_network(self) -> Response:
        response = self._call(
            "describe_vpcs", Filters=[{"Name": "is-default", "Values": ["true"]}]
        )
        if not response["success"]:
            return response

        vpcs = response["result"].get("Vpcs", [])
        if not vpcs:
            return failure("Could not locate a default VPC", NOT_FOUND_CODE)
        logger.info(f"Found default VPC {vpcs[0]['VpcId']}")
        return success({"id": vpcs[0]["VpcId"]})

    def get_default_subnets(self) -> Response:
        filters = [{"Name": "default-for-az", "Values": ["true"]}]
        if self.availability_zones:
            filters.append(
                {"Name": "availability-zone", "Values": list(self.availability_zones)}
            )
        response = self._call("describe_subnets", Filters=filters)
        if not response["success"]:
            return response

        subnet_ids = [s["SubnetId"] for s in response["result"].get("Subnets", [])]
        if not subnet_ids:
            return failure("Unable to locate default subnets", NOT_FOUND_CODE)
        logger.info(f"Found default subnets {','.join(subnet_ids)}")
        return success(subnet_ids)


class Elbv2LoadBalancerProvisioner(AwsClient, LoadBalancerProvisioner):
    service_name = "elbv2"

    def create_target_group(
        self, name: str, network_id: str, port: int = 80, protocol: str = "HTTP"
    ) -> Response:
        return self._call_and_map(
            "create_target_group",
            lambda r: {
                "arn": r["TargetGroups"][0]["TargetGroupArn"],
                "name": r["TargetGroups"][0]["TargetGroupName"],
            },
            Name=name,
            Protocol=protocol,
            Port=port,
            VpcId=network_id,
            TargetType="instance",
        )

    def register_targets(
        self, target_group_arn: str, instance_id: str, port: int = 80
    ) -> Response:
        return self._call_and_map(
            "register_targets",
            lambda r: None,
            TargetGroupArn=target_group_arn,
            Targets=[{"Id": instance_id, "Port": port}],
        )

    def create_load_balancer(
        self, name: str, subnet_ids: List[str], security_group_ids: List[str]
    ) -> Response:
        return self._call_and_map(
            "create_load_balancer",
            lambda r: {
                "arn": r["LoadBalancers"][0]["LoadBalancerArn"],
                "dns_name": r["LoadBalancers"][0]["DNSName"],
                "canonical_hosted_zone_id": r["LoadBalancers"][0]["CanonicalHostedZoneId"],
            },
            Name=name,
            Subnets=subnet_ids,
            SecurityGroups=security_group_ids,
            Scheme="internet-facing",
            Type="application",
            IpAddressType="ipv4",
        )

    def create_listener(
        self,
        load_balancer_arn: str,
        protocol: str,
        port: int,
        default_action: Dict[str, Any],
        certificate_arn: Optional[str] = None,
    ) -> Response:
        if default_action["type"] == "forward":
            action = {"Type": "forward", "TargetGroupArn": default_action["target_group_arn"]}
        else:
            action = {
                "Type": "redirect",
                "RedirectConfig": {
                    "Protocol": default_action["protocol"],
                    "Port": default_action["port"],
                    "StatusCode": default_action["status_code"],
                },
            }

        kwargs: Dict[str, Any] = {
            "LoadBalancerArn": load_balancer_arn,
            "Protocol": protocol,
            "Port": port,
            "DefaultActions": [action],
        }
        if certificate_arn:
            kwargs["Certificates"] = [{"CertificateArn": certificate_arn}]

        return self._call_and_map(
            "create_listener",
            lambda r: {"arn": r["Listeners"][0]["ListenerArn"]},
            **kwargs,
        )


def build_collaborators(config) -> Dict[str, Any]:
    """
    Build the provider adapters for a ``ProvisioningConfig``.

    Returns:
        Keyword arguments for ``ProvisioningService``
    """
    if config.dns_provider == "cloudflare":
        dns_zones: DnsZoneManager = CloudflareZoneManager(
            config.cloudflare_api_token,
            account_id=config.cloudflare_account_id,
            timeout=config.collaborator_timeout_seconds,
        )
    else:
        dns_zones = Route53ZoneManager(config.aws_region)
    logger.info(f"Using {config.dns_provider} for DNS zones")

    return {
        "registrar": Route53DomainsRegistrar(
            config.registrant_contact,
            auto_renew=config.auto_renew,
            duration_years=config.duration_years,
        ),
        # certificates must live where the load balancer is
        "certificate_authority": AcmCertificateAuthority(config.aws_region),
        "dns_zones": dns_zones,
        "compute": Ec2ComputeDescriptor(
            config.aws_region, availability_zones=config.default_availability_zones
        ),
        "load_balancers": Elbv2LoadBalancerProvisioner(config.aws_region),
    }
