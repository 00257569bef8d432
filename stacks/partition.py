KNOWN_PARTITIONS = ("aws", "aws-cn", "aws-us-gov")

# Organizations is a global service homed in one region per partition.
_ORGANIZATIONS_REGIONS = {
    "aws": "us-east-1",
    "aws-cn": "cn-northwest-1",
    "aws-us-gov": "us-gov-west-1",
}


def partition_for_region(region: str) -> str:
    region = (region or "").strip()
    if region.startswith("cn-"):
        return "aws-cn"
    if region.startswith("us-gov-"):
        return "aws-us-gov"
    return "aws"


def service_domain(partition: str) -> str:
    if partition == "aws-cn":
        return "amazonaws.com.cn"
    return "amazonaws.com"


def service_principal(service: str, partition: str, region: str | None = None) -> str:
    """Return the service principal name for ``service`` in ``partition``.

    With ``region`` set the regional form is returned, e.g.
    ``logs.cn-north-1.amazonaws.com.cn``.
    """
    if region:
        return f"{service}.{region}.{service_domain(partition)}"
    return f"{service}.{service_domain(partition)}"


def organizations_region(partition: str) -> str:
    return _ORGANIZATIONS_REGIONS.get(partition, "us-east-1")
