"""In-memory stand-ins for the boto3 clients used by static-edge.

Each fake implements only the operations the code calls, keeps just enough
state to behave like the real service, and raises real botocore
``ClientError`` exceptions. Every call is appended to a journal shared by all
fakes of one ``FakeClientManager`` so tests can assert on ordering.
"""

import copy
import hashlib
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

ACCOUNT_ID = "123456789012"

BLOCK_ALL = {
    "BlockPublicAcls": True,
    "IgnorePublicAcls": True,
    "BlockPublicPolicy": True,
    "RestrictPublicBuckets": True,
}


def client_error(code: str, message: str = "", operation: str = "Operation", status: int = 400) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status, "RequestId": "req-test"},
        },
        operation,
    )


def _fqdn(name: str) -> str:
    name = name.lower()
    return name if name.endswith(".") else f"{name}."


class FakeService:
    """Base class recording calls into a shared journal."""

    service = ""

    def __init__(self, journal: Optional[List[Tuple[str, str]]] = None):
        self.journal = journal if journal is not None else []

    def _log(self, operation: str) -> None:
        self.journal.append((self.service, operation))

    def calls(self, operation: str) -> int:
        return sum(1 for service, op in self.journal if service == self.service and op == operation)


class FakeRoute53(FakeService):
    service = "route53"

    def __init__(self, journal=None, pending_polls: int = 1):
        super().__init__(journal)
        self.zones: Dict[str, Dict[str, Any]] = {}
        self.records: Dict[str, Dict[Tuple[str, str], Dict[str, Any]]] = {}
        self.changes: Dict[str, int] = {}
        self.pending_polls = pending_polls
        self._caller_references = set()
        self._counter = 0

    def add_zone(self, name: str, zone_id: str = "ZEXISTING") -> str:
        self.zones[zone_id] = {
            "Id": f"/hostedzone/{zone_id}",
            "Name": _fqdn(name),
            "CallerReference": "manual",
            "Config": {"PrivateZone": False},
        }
        self.records[zone_id] = {}
        return zone_id

    def find_record(self, name: str, record_type: str) -> Optional[Dict[str, Any]]:
        for records in self.records.values():
            record = records.get((_fqdn(name), record_type))
            if record:
                return record
        return None

    def _zone(self, zone_id: str, operation: str) -> Dict[str, Any]:
        zone_id = zone_id.split("/")[-1]
        if zone_id not in self.zones:
            raise client_error("NoSuchHostedZone", f"No hosted zone found with ID: {zone_id}", operation, 404)
        return self.zones[zone_id]

    def create_hosted_zone(self, Name, CallerReference, HostedZoneConfig=None):
        self._log("create_hosted_zone")
        if CallerReference in self._caller_references:
            raise client_error("HostedZoneAlreadyExists", "Caller reference already used", "CreateHostedZone", 409)
        self._caller_references.add(CallerReference)
        self._counter += 1
        zone_id = f"Z{self._counter:04d}EXAMPLE"
        self.zones[zone_id] = {
            "Id": f"/hostedzone/{zone_id}",
            "Name": _fqdn(Name),
            "CallerReference": CallerReference,
            "Config": {"PrivateZone": False, "Comment": (HostedZoneConfig or {}).get("Comment", "")},
        }
        self.records[zone_id] = {}
        return {"HostedZone": self.zones[zone_id], "DelegationSet": {"NameServers": self._name_servers()}}

    def list_hosted_zones_by_name(self, DNSName=None, MaxItems=None):
        self._log("list_hosted_zones_by_name")
        zones = sorted(self.zones.values(), key=lambda zone: zone["Name"])
        if DNSName:
            zones = [zone for zone in zones if zone["Name"] >= _fqdn(DNSName)]
        return {"HostedZones": copy.deepcopy(zones), "IsTruncated": False}

    def get_hosted_zone(self, Id):
        self._log("get_hosted_zone")
        zone = self._zone(Id, "GetHostedZone")
        return {"HostedZone": copy.deepcopy(zone), "DelegationSet": {"NameServers": self._name_servers()}}

    def change_resource_record_sets(self, HostedZoneId, ChangeBatch):
        self._log("change_resource_record_sets")
        zone = self._zone(HostedZoneId, "ChangeResourceRecordSets")
        records = self.records[zone["Id"].split("/")[-1]]
        for change in ChangeBatch["Changes"]:
            record_set = change["ResourceRecordSet"]
            key = (_fqdn(record_set["Name"]), record_set["Type"])
            if change["Action"] == "CREATE" and key in records:
                raise client_error(
                    "InvalidChangeBatch", "Tried to create resource record set but it already exists",
                    "ChangeResourceRecordSets", 400,
                )
            records[key] = copy.deepcopy(record_set)

        self._counter += 1
        change_id = f"/change/C{self._counter:04d}"
        self.changes[change_id] = self.pending_polls
        return {"ChangeInfo": {"Id": change_id, "Status": "PENDING" if self.pending_polls else "INSYNC"}}

    def get_change(self, Id):
        self._log("get_change")
        remaining = self.changes[Id]
        if remaining > 0:
            self.changes[Id] = remaining - 1
            return {"ChangeInfo": {"Id": Id, "Status": "PENDING"}}
        return {"ChangeInfo": {"Id": Id, "Status": "INSYNC"}}

    def list_resource_record_sets(self, HostedZoneId, StartRecordName=None, StartRecordType=None, MaxItems=None):
        self._log("list_resource_record_sets")
        zone = self._zone(HostedZoneId, "ListResourceRecordSets")
        records = self.records[zone["Id"].split("/")[-1]]
        record = records.get((_fqdn(StartRecordName), StartRecordType))
        return {"ResourceRecordSets": [copy.deepcopy(record)] if record else []}

    @staticmethod
    def _name_servers() -> List[str]:
        return ["ns-1.awsdns-01.org", "ns-2.awsdns-02.co.uk", "ns-3.awsdns-03.com", "ns-4.awsdns-04.net"]


class FakeACM(FakeService):
    """ACM that issues a certificate once its validation CNAMEs exist in Route 53."""

    service = "acm"

    def __init__(self, journal=None, route53: Optional[FakeRoute53] = None):
        super().__init__(journal)
        self.route53 = route53
        self.certificates: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {}
        self.records_delay = 0
        self.failure_reason: Optional[str] = None
        self.never_issue = False
        self._counter = 0

    def add_certificate(self, domain: str, names: List[str], status: str = "ISSUED") -> str:
        self._counter += 1
        arn = f"arn:aws:acm:us-east-1:{ACCOUNT_ID}:certificate/existing-{self._counter}"
        self.certificates[arn] = self._new_certificate(arn, domain, names, status)
        return arn

    @staticmethod
    def validation_record(name: str) -> Dict[str, str]:
        digest = hashlib.md5(name.encode("utf-8")).hexdigest()[:12]
        return {
            "Name": f"_{digest}.{name}.",
            "Type": "CNAME",
            "Value": f"_{digest}.validations.aws.",
        }

    def _new_certificate(self, arn: str, domain: str, names: List[str], status: str) -> Dict[str, Any]:
        return {
            "CertificateArn": arn,
            "DomainName": domain,
            "SubjectAlternativeNames": list(names),
            "Status": status,
            "describe_count": 0,
        }

    def request_certificate(self, DomainName, ValidationMethod, IdempotencyToken=None, Options=None,
                            SubjectAlternativeNames=None):
        self._log("request_certificate")
        assert ValidationMethod == "DNS"
        if IdempotencyToken in self.tokens:
            return {"CertificateArn": self.tokens[IdempotencyToken]}

        self._counter += 1
        arn = f"arn:aws:acm:us-east-1:{ACCOUNT_ID}:certificate/cert-{self._counter}"
        names = SubjectAlternativeNames or [DomainName]
        self.certificates[arn] = self._new_certificate(arn, DomainName, names, "PENDING_VALIDATION")
        self.tokens[IdempotencyToken] = arn
        return {"CertificateArn": arn}

    def _records_published(self, certificate: Dict[str, Any]) -> bool:
        if self.route53 is None:
            return False
        for name in certificate["SubjectAlternativeNames"]:
            expected = self.validation_record(name)
            record = self.route53.find_record(expected["Name"], "CNAME")
            if not record or record["ResourceRecords"][0]["Value"] != expected["Value"]:
                return False
        return True

    def describe_certificate(self, CertificateArn):
        self._log("describe_certificate")
        if CertificateArn not in self.certificates:
            raise client_error("ResourceNotFoundException", "Certificate not found", "DescribeCertificate", 400)
        certificate = self.certificates[CertificateArn]
        certificate["describe_count"] += 1

        if certificate["Status"] == "PENDING_VALIDATION" and self._records_published(certificate):
            if self.failure_reason:
                certificate["Status"] = "FAILED"
                certificate["FailureReason"] = self.failure_reason
            elif not self.never_issue:
                certificate["Status"] = "ISSUED"

        options = []
        for name in certificate["SubjectAlternativeNames"]:
            option = {"DomainName": name, "ValidationMethod": "DNS"}
            if certificate["describe_count"] > self.records_delay:
                option["ResourceRecord"] = self.validation_record(name)
            options.append(option)

        description = {key: value for key, value in certificate.items() if key != "describe_count"}
        description["DomainValidationOptions"] = options
        return {"Certificate": copy.deepcopy(description)}

    def list_certificates(self, CertificateStatuses=None, NextToken=None):
        self._log("list_certificates")
        summaries = [
            {"CertificateArn": arn, "DomainName": certificate["DomainName"]}
            for arn, certificate in self.certificates.items()
            if not CertificateStatuses or certificate["Status"] in CertificateStatuses
        ]
        return {"CertificateSummaryList": summaries}


class FakeCloudFront(FakeService):
    """CloudFront with ETag checks and a configurable deployment delay."""

    service = "cloudfront"

    def __init__(self, journal=None, deploy_polls: int = 1):
        super().__init__(journal)
        self.distributions: Dict[str, Dict[str, Any]] = {}
        self.access_controls: Dict[str, Dict[str, Any]] = {}
        self.invalidations: List[Dict[str, Any]] = []
        self.deploy_polls = deploy_polls
        self.concurrent_writes = 0
        self._caller_references: Dict[str, str] = {}
        self._counter = 0

    def add_website_distribution(self, distribution_id: str, bucket: str, region: str, comment: str = "") -> str:
        origin_id = f"S3-Website-{bucket}"
        config = {
            "CallerReference": f"manual-{distribution_id}",
            "Comment": comment,
            "Enabled": True,
            "Aliases": {"Quantity": 0},
            "DefaultRootObject": "",
            "Origins": {
                "Quantity": 1,
                "Items": [{
                    "Id": origin_id,
                    "DomainName": f"{bucket}.s3-website-{region}.amazonaws.com",
                    "OriginPath": "",
                    "CustomHeaders": {"Quantity": 0},
                    "CustomOriginConfig": {"HTTPPort": 80, "HTTPSPort": 443, "OriginProtocolPolicy": "http-only"},
                    "ConnectionAttempts": 3,
                    "ConnectionTimeout": 10,
                }],
            },
            "DefaultCacheBehavior": {"TargetOriginId": origin_id, "ViewerProtocolPolicy": "redirect-to-https"},
            "CacheBehaviors": {
                "Quantity": 1,
                "Items": [{"PathPattern": "/assets/*", "TargetOriginId": origin_id}],
            },
            "ViewerCertificate": {"CloudFrontDefaultCertificate": True},
        }
        self.distributions[distribution_id] = {
            "config": config,
            "etag": "ETAG0",
            "polls_left": 0,
            "domain": f"{distribution_id.lower()}.cloudfront.net",
        }
        return distribution_id

    def _distribution(self, distribution_id: str, operation: str) -> Dict[str, Any]:
        if distribution_id not in self.distributions:
            raise client_error("NoSuchDistribution", "The specified distribution does not exist.", operation, 404)
        return self.distributions[distribution_id]

    def config(self, distribution_id: str) -> Dict[str, Any]:
        return self.distributions[distribution_id]["config"]

    def create_distribution(self, DistributionConfig):
        self._log("create_distribution")
        reference = DistributionConfig["CallerReference"]
        if reference in self._caller_references:
            raise client_error(
                "DistributionAlreadyExists", "The caller reference is already associated with a distribution.",
                "CreateDistribution", 409,
            )
        self._counter += 1
        distribution_id = f"EDIST{self._counter:04d}"
        self._caller_references[reference] = distribution_id
        self.distributions[distribution_id] = {
            "config": copy.deepcopy(DistributionConfig),
            "etag": f"ETAG{self._counter}",
            "polls_left": self.deploy_polls,
            "domain": f"d{self._counter:04d}.cloudfront.net",
        }
        return {"Distribution": {"Id": distribution_id, "Status": "InProgress"}, "ETag": f"ETAG{self._counter}"}

    def get_distribution_config(self, Id):
        self._log("get_distribution_config")
        distribution = self._distribution(Id, "GetDistributionConfig")
        return {"DistributionConfig": copy.deepcopy(distribution["config"]), "ETag": distribution["etag"]}

    def update_distribution(self, Id, IfMatch, DistributionConfig):
        self._log("update_distribution")
        distribution = self._distribution(Id, "UpdateDistribution")

        if self.concurrent_writes > 0:
            # another writer changes the distribution between our read and write
            self.concurrent_writes -= 1
            self._counter += 1
            distribution["etag"] = f"ETAG{self._counter}"

        if IfMatch != distribution["etag"]:
            raise client_error(
                "PreconditionFailed", "The precondition given in one or more of the request-header fields "
                "evaluated to false.", "UpdateDistribution", 412,
            )

        self._counter += 1
        distribution["config"] = copy.deepcopy(DistributionConfig)
        distribution["etag"] = f"ETAG{self._counter}"
        distribution["polls_left"] = self.deploy_polls
        return {"Distribution": {"Id": Id, "Status": "InProgress"}, "ETag": distribution["etag"]}

    def get_distribution(self, Id):
        self._log("get_distribution")
        distribution = self._distribution(Id, "GetDistribution")
        if distribution["polls_left"] > 0:
            distribution["polls_left"] -= 1
            status = "InProgress"
        else:
            status = "Deployed"
        return {
            "Distribution": {
                "Id": Id,
                "Status": status,
                "DomainName": distribution["domain"],
                "DistributionConfig": copy.deepcopy(distribution["config"]),
            },
            "ETag": distribution["etag"],
        }

    def list_distributions(self, Marker=None):
        self._log("list_distributions")
        items = [
            {"Id": distribution_id, "Comment": data["config"].get("Comment", ""),
             "Aliases": copy.deepcopy(data["config"].get("Aliases", {"Quantity": 0}))}
            for distribution_id, data in self.distributions.items()
        ]
        return {"DistributionList": {"Items": items, "IsTruncated": False, "Quantity": len(items)}}

    def create_origin_access_control(self, OriginAccessControlConfig):
        self._log("create_origin_access_control")
        name = OriginAccessControlConfig["Name"]
        if any(control["Name"] == name for control in self.access_controls.values()):
            raise client_error(
                "OriginAccessControlAlreadyExists", "An origin access control with this name already exists.",
                "CreateOriginAccessControl", 409,
            )
        self._counter += 1
        control_id = f"OAC{self._counter:04d}"
        self.access_controls[control_id] = copy.deepcopy(OriginAccessControlConfig)
        return {"OriginAccessControl": {"Id": control_id, "OriginAccessControlConfig": OriginAccessControlConfig}}

    def list_origin_access_controls(self, Marker=None):
        self._log("list_origin_access_controls")
        items = [{"Id": control_id, "Name": config["Name"]} for control_id, config in self.access_controls.items()]
        return {"OriginAccessControlList": {"Items": items, "IsTruncated": False, "Quantity": len(items)}}

    def get_origin_access_control(self, Id):
        self._log("get_origin_access_control")
        if Id not in self.access_controls:
            raise client_error("NoSuchOriginAccessControl", "Not found", "GetOriginAccessControl", 404)
        return {"OriginAccessControl": {"Id": Id, "OriginAccessControlConfig": copy.deepcopy(self.access_controls[Id])}}

    def create_invalidation(self, DistributionId, InvalidationBatch):
        self._log("create_invalidation")
        self._distribution(DistributionId, "CreateInvalidation")
        self.invalidations.append({"DistributionId": DistributionId, **copy.deepcopy(InvalidationBatch)})
        return {"Invalidation": {"Id": f"INV{len(self.invalidations)}", "Status": "InProgress"}}


class FakeS3(FakeService):
    service = "s3"

    def __init__(self, journal=None):
        super().__init__(journal)
        self.buckets: Dict[str, Dict[str, Any]] = {}

    def add_bucket(self, name: str, region: str = "us-west-2", website: bool = True) -> None:
        self.buckets[name] = {
            "region": region,
            "website": website,
            "policy": None,
            "public_access_block": None,
            "objects": {},
        }

    def _bucket(self, name: str, operation: str) -> Dict[str, Any]:
        if name not in self.buckets:
            raise client_error("NoSuchBucket", "The specified bucket does not exist", operation, 404)
        return self.buckets[name]

    def head_bucket(self, Bucket):
        self._log("head_bucket")
        if Bucket not in self.buckets:
            raise client_error("404", "Not Found", "HeadBucket", 404)
        return {}

    def create_bucket(self, Bucket, CreateBucketConfiguration=None):
        self._log("create_bucket")
        if Bucket in self.buckets:
            raise client_error("BucketAlreadyOwnedByYou", "Your previous request succeeded", "CreateBucket", 409)
        region = (CreateBucketConfiguration or {}).get("LocationConstraint", "us-east-1")
        self.add_bucket(Bucket, region=region, website=False)
        # new buckets block public access by default
        self.buckets[Bucket]["public_access_block"] = dict(BLOCK_ALL)
        return {"Location": f"/{Bucket}"}

    def put_bucket_policy(self, Bucket, Policy):
        self._log("put_bucket_policy")
        self._bucket(Bucket, "PutBucketPolicy")["policy"] = Policy
        return {}

    def put_public_access_block(self, Bucket, PublicAccessBlockConfiguration):
        self._log("put_public_access_block")
        self._bucket(Bucket, "PutPublicAccessBlock")["public_access_block"] = PublicAccessBlockConfiguration
        return {}

    def delete_bucket_website(self, Bucket):
        self._log("delete_bucket_website")
        bucket = self._bucket(Bucket, "DeleteBucketWebsite")
        if not bucket["website"]:
            raise client_error(
                "NoSuchWebsiteConfiguration", "The specified bucket does not have a website configuration",
                "DeleteBucketWebsite", 404,
            )
        bucket["website"] = False
        return {}

    def get_bucket_website(self, Bucket):
        self._log("get_bucket_website")
        bucket = self._bucket(Bucket, "GetBucketWebsite")
        if not bucket["website"]:
            raise client_error(
                "NoSuchWebsiteConfiguration", "The specified bucket does not have a website configuration",
                "GetBucketWebsite", 404,
            )
        return dict(bucket.get("website_config") or {"IndexDocument": {"Suffix": "index.html"}})

    def put_bucket_website(self, Bucket, WebsiteConfiguration):
        self._log("put_bucket_website")
        bucket = self._bucket(Bucket, "PutBucketWebsite")
        bucket["website"] = True
        bucket["website_config"] = copy.deepcopy(WebsiteConfiguration)
        return {}

    def get_bucket_policy(self, Bucket):
        self._log("get_bucket_policy")
        policy = self._bucket(Bucket, "GetBucketPolicy")["policy"]
        if policy is None:
            raise client_error("NoSuchBucketPolicy", "The bucket policy does not exist", "GetBucketPolicy", 404)
        return {"Policy": policy}

    def get_public_access_block(self, Bucket):
        self._log("get_public_access_block")
        settings = self._bucket(Bucket, "GetPublicAccessBlock")["public_access_block"]
        if settings is None:
            raise client_error(
                "NoSuchPublicAccessBlockConfiguration", "The public access block configuration was not found",
                "GetPublicAccessBlock", 404,
            )
        return {"PublicAccessBlockConfiguration": dict(settings)}

    def delete_public_access_block(self, Bucket):
        self._log("delete_public_access_block")
        self._bucket(Bucket, "DeletePublicAccessBlock")["public_access_block"] = None
        return {}

    def head_object(self, Bucket, Key):
        self._log("head_object")
        if Key not in self._bucket(Bucket, "HeadObject")["objects"]:
            raise client_error("404", "Not Found", "HeadObject", 404)
        return {"ContentLength": len(self.buckets[Bucket]["objects"][Key]["Body"])}

    def put_object(self, Bucket, Key, Body, **params):
        self._log("put_object")
        self._bucket(Bucket, "PutObject")["objects"][Key] = {"Body": Body, **params}
        return {"ETag": '"etag"'}


class FakeSTS(FakeService):
    service = "sts"

    def get_caller_identity(self):
        self._log("get_caller_identity")
        return {"Account": ACCOUNT_ID, "Arn": f"arn:aws:iam::{ACCOUNT_ID}:user/deployer", "UserId": "AIDATEST"}


class FakeClientManager:
    """Drop-in replacement for ``AWSClientManager`` backed by the fakes above."""

    def __init__(self, profile: Optional[str] = None, region: Optional[str] = None):
        self.profile = profile
        self.region = region
        self.journal: List[Tuple[str, str]] = []
        self.route53 = FakeRoute53(self.journal)
        self.acm = FakeACM(self.journal, route53=self.route53)
        self.cloudfront = FakeCloudFront(self.journal)
        self.s3 = FakeS3(self.journal)
        self.sts = FakeSTS(self.journal)
        self._clients = {
            "route53": self.route53,
            "acm": self.acm,
            "cloudfront": self.cloudfront,
            "s3": self.s3,
            "sts": self.sts,
        }

    def get_client(self, service_name: str, region: Optional[str] = None):
        return self._clients[service_name]

    def get_account_id(self) -> str:
        return self.sts.get_caller_identity()["Account"]

    def writes(self) -> List[Tuple[str, str]]:
        """Journal entries for mutating operations."""
        prefixes = ("create_", "update_", "put_", "delete_", "change_", "request_")
        return [(service, op) for service, op in self.journal if op.startswith(prefixes)]
