from typing import Callable

from aws_cdk import (
    CfnOutput,
    RemovalPolicy,
    Stack,
    Token,
    aws_iam as iam,
    aws_kms as kms,
    aws_ssm as ssm,
    custom_resources as cr,
)
from cdk_nag import NagSuppressions
from constructs import Construct

from stacks.config import AcceleratorConfig
from stacks.partition import organizations_region, service_principal

KEY_USAGE_ACTIONS = [
    "kms:Encrypt",
    "kms:Decrypt",
    "kms:ReEncrypt*",
    "kms:GenerateDataKey*",
    "kms:DescribeKey",
]

# (name, service, enabled-when) evaluated in order; one key policy statement per match.
SERVICE_PRINCIPAL_RULES: list[tuple[str, str, Callable[[AcceleratorConfig], bool]]] = [
    ("Sns", "sns", lambda _config: True),
    ("Lambda", "lambda", lambda _config: True),
    ("Cloudwatch", "cloudwatch", lambda _config: True),
    ("Macie", "macie", lambda config: config.security.macie_enable),
    ("Guardduty", "guardduty", lambda config: config.security.guardduty_enable),
]


def allowed_service_principals(config: AcceleratorConfig) -> list[tuple[str, str]]:
    return [
        (name, service_principal(service, config.partition))
        for name, service, enabled in SERVICE_PRINCIPAL_RULES
        if enabled(config)
    ]


def uses_account_trust(config: AcceleratorConfig) -> bool:
    """China partition has no organization principal support; trust the listed accounts."""
    return config.partition == "aws-cn" and bool(config.account_ids)


def cross_account_trust_principal(
    config: AcceleratorConfig, organization_id: str | None
) -> iam.IPrincipal:
    if uses_account_trust(config):
        return iam.CompositePrincipal(
            *[iam.AccountPrincipal(account_id) for account_id in config.account_ids]
        )
    if not organization_id:
        raise ValueError("organization_id is required for organization trust")
    return iam.OrganizationPrincipal(organization_id)


class KeyStack(Stack):
    CROSS_ACCOUNT_ACCESS_ROLE_NAME = "AWSAccelerator-CrossAccount-SsmParameter-Role"
    ACCELERATOR_KEY_ARN_PARAMETER_NAME = "/accelerator/kms/key-arn"

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: AcceleratorConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        if config.organization.enable and Token.is_unresolved(self.region):
            raise ValueError(
                "KeyStack needs a concrete env region when organization mode is enabled"
            )

        self.config = config
        self._organization_id: str | None = None

        accelerator_role_condition = {
            "ArnLike": {
                "aws:PrincipalARN": [f"arn:{self.partition}:iam::*:role/AWSAccelerator-*"]
            }
        }

        self.key = kms.Key(
            self,
            "AcceleratorKey",
            alias="alias/accelerator/kms/key",
            description="AWS Accelerator Kms Key",
            enable_key_rotation=True,
            removal_policy=RemovalPolicy.RETAIN,
        )

        if config.organization.enable:
            if config.account_ids:
                principals = [
                    iam.AccountPrincipal(account_id) for account_id in config.account_ids
                ]
            else:
                principals = [iam.OrganizationPrincipal(self.organization_id)]
            self.key.add_to_resource_policy(
                iam.PolicyStatement(
                    sid="Allow Accelerator Role to use the encryption key",
                    principals=principals,
                    actions=KEY_USAGE_ACTIONS,
                    resources=["*"],
                    conditions=accelerator_role_condition,
                )
            )

        self.key.add_to_resource_policy(
            iam.PolicyStatement(
                sid="Allow Cloudwatch logs to use the encryption key",
                principals=[iam.ServicePrincipal(service_principal("logs", config.partition))],
                actions=[
                    "kms:Encrypt*",
                    "kms:Decrypt*",
                    "kms:ReEncrypt*",
                    "kms:GenerateDataKey*",
                    "kms:Describe*",
                ],
                resources=["*"],
            )
        )
        # Log group encryption is authorized against the regional logs principal.
        self.key.add_to_resource_policy(
            iam.PolicyStatement(
                sid="Allow regional Cloudwatch logs to use the encryption key",
                principals=[
                    iam.ServicePrincipal(
                        service_principal("logs", config.partition, self.region)
                    )
                ],
                actions=[
                    "kms:Encrypt*",
                    "kms:Decrypt*",
                    "kms:ReEncrypt*",
                    "kms:GenerateDataKey*",
                    "kms:Describe*",
                ],
                resources=["*"],
            )
        )

        for name, principal in allowed_service_principals(config):
            self.key.add_to_resource_policy(
                iam.PolicyStatement(
                    sid=f"Allow {name} service to use the encryption key",
                    principals=[iam.ServicePrincipal(principal)],
                    actions=KEY_USAGE_ACTIONS,
                    resources=["*"],
                )
            )

        ssm.StringParameter(
            self,
            "AcceleratorKmsArnParameter",
            parameter_name=self.ACCELERATOR_KEY_ARN_PARAMETER_NAME,
            string_value=self.key.key_arn,
        )

        self.cross_account_role: iam.Role | None = None
        # Organization level parameter access is granted from the home region only.
        if self.region == config.home_region and config.organization.enable:
            self.cross_account_role = self._cross_account_ssm_role(accelerator_role_condition)

        CfnOutput(
            self,
            "AcceleratorKeyArn",
            value=self.key.key_arn,
        )

    @property
    def organization_id(self) -> str:
        """Organization id looked up at deploy time; created on first use."""
        if self._organization_id is None:
            sdk_call = cr.AwsSdkCall(
                service="Organizations",
                action="describeOrganization",
                region=organizations_region(self.config.partition),
                physical_resource_id=cr.PhysicalResourceId.of("Organization"),
            )
            organization = cr.AwsCustomResource(
                self,
                "Organization",
                on_create=sdk_call,
                on_update=sdk_call,
                policy=cr.AwsCustomResourcePolicy.from_sdk_calls(
                    resources=cr.AwsCustomResourcePolicy.ANY_RESOURCE
                ),
                install_latest_aws_sdk=False,
            )
            self._organization_id = organization.get_response_field("Organization.Id")
        return self._organization_id

    def _cross_account_ssm_role(self, accelerator_role_condition: dict) -> iam.Role:
        organization_id = None if uses_account_trust(self.config) else self.organization_id
        role = iam.Role(
            self,
            "CrossAccountAcceleratorSsmParamAccessRole",
            role_name=self.CROSS_ACCOUNT_ACCESS_ROLE_NAME,
            assumed_by=cross_account_trust_principal(self.config, organization_id),
            inline_policies={
                "default": iam.PolicyDocument(
                    statements=[
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=["ssm:GetParameters", "ssm:GetParameter"],
                            resources=[
                                f"arn:{self.partition}:ssm:*:{self.account}:parameter"
                                f"{self.ACCELERATOR_KEY_ARN_PARAMETER_NAME}"
                            ],
                            conditions=accelerator_role_condition,
                        ),
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=["ssm:DescribeParameters"],
                            resources=["*"],
                            conditions=accelerator_role_condition,
                        ),
                    ]
                )
            },
        )

        NagSuppressions.add_resource_suppressions(
            role,
            [
                {
                    "id": "AwsSolutions-IAM5",
                    "reason": "Accelerator roles in every region need to read and describe the key ARN parameter.",
                },
            ],
            apply_to_children=True,
        )
        return role
