from pathlib import Path

from aws_cdk import (
    CustomResource,
    Duration,
    RemovalPolicy,
    Stack,
    Token,
    aws_iam as iam,
    aws_kms as kms,
    aws_lambda as _lambda,
    aws_logs as logs,
    custom_resources as cr,
)
from constructs import Construct

from stacks.partition import partition_for_region, service_principal

LAMBDA_ASSET_DIR = str(Path(__file__).resolve().parents[1] / "lambda")

SESSION_MANAGER_LOG_GROUP_NAME = "aws-accelerator-session-manager-logs"
SESSION_MANAGER_DOCUMENT_NAME = "SSM-SessionManagerRunShell"

# Stack-level ids for the shared custom resource handler.
HANDLER_ID = "SessionManagerSettingsHandler"
PROVIDER_ID = "SessionManagerSettingsProvider"
HANDLER_LOG_GROUP_ID = f"{HANDLER_ID}LogGroup"


class SessionManagerSettings(Construct):
    """Session Manager logging destinations, instance permissions and preferences.

    The agent policy always carries the messaging channel and session key
    statements; CloudWatch and S3 destinations each add their own block. The
    Session Manager preferences document itself is written by a custom
    resource handler shared by every instance of this construct in a stack.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        send_to_s3: bool,
        send_to_cloud_watch_logs: bool,
        cloud_watch_encryption_enabled: bool,
        kms_key: kms.IKey,
        log_retention_in_days: int,
        partition: str | None = None,
        s3_bucket_name: str | None = None,
        s3_key_prefix: str | None = None,
        s3_bucket_key_arn: str | None = None,
    ) -> None:
        # Checked before registering with the scope so a bad config leaves no resources behind.
        if send_to_s3 and (not s3_bucket_key_arn or not s3_bucket_name):
            raise ValueError("Bucket Key Arn and Bucket Name must be provided")

        super().__init__(scope, construct_id)

        stack = Stack.of(self)
        self._stack = stack
        if partition is None:
            partition = (
                "aws" if Token.is_unresolved(stack.region) else partition_for_region(stack.region)
            )
        self._partition = partition

        ec2_policy_document = iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "ssmmessages:CreateControlChannel",
                        "ssmmessages:CreateDataChannel",
                        "ssmmessages:OpenControlChannel",
                        "ssmmessages:OpenDataChannel",
                        "ssm:UpdateInstanceInformation",
                    ],
                    resources=["*"],
                )
            ]
        )

        self.log_group_name = ""
        if send_to_cloud_watch_logs:
            logs_key = self._logging_key(
                "SessionManagerLogsCmk",
                "accelerator/session-manager-logging/cloud-watch-logs",
            )
            log_group = logs.LogGroup(
                self,
                "sessionManagerLogGroup",
                retention=logs.RetentionDays.TEN_YEARS,
                log_group_name=SESSION_MANAGER_LOG_GROUP_NAME,
                encryption_key=logs_key,
            )
            self.log_group_name = log_group.log_group_name

            log_group_arn_prefix = (
                f"arn:{stack.partition}:logs:{stack.region}:{stack.account}:log-group"
            )
            ec2_policy_document.add_statements(
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=["logs:DescribeLogGroups"],
                    resources=[f"{log_group_arn_prefix}:*"],
                ),
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "logs:CreateLogStream",
                        "logs:PutLogEvents",
                        "logs:DescribeLogStreams",
                    ],
                    resources=[f"{log_group_arn_prefix}:{SESSION_MANAGER_LOG_GROUP_NAME}:*"],
                ),
            )

        if send_to_s3:
            object_key = f"{s3_key_prefix}/*" if s3_key_prefix else "*"
            ec2_policy_document.add_statements(
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=["s3:PutObject", "s3:PutObjectAcl"],
                    resources=[f"arn:{stack.partition}:s3:::{s3_bucket_name}/{object_key}"],
                ),
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=["s3:GetEncryptionConfiguration"],
                    resources=[f"arn:{stack.partition}:s3:::{s3_bucket_name}"],
                ),
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=["kms:Decrypt", "kms:GenerateDataKey"],
                    resources=[s3_bucket_key_arn],
                ),
            )

        self.session_key = self._logging_key(
            "SessionManagerSessionCmk",
            "accelerator/session-manager-logging/session",
        )
        ec2_policy_document.add_statements(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["kms:Decrypt"],
                resources=[self.session_key.key_arn],
            )
        )

        ec2_policy = iam.ManagedPolicy(
            self,
            "SessionManagerEC2Policy",
            document=ec2_policy_document,
            managed_policy_name=f"SessionManagerLogging-{stack.region}",
        )

        self.ec2_role = iam.Role(
            self,
            "SessionManagerEC2Role",
            assumed_by=iam.ServicePrincipal(service_principal("ec2", partition)),
            description="IAM Role for an EC2 configured for Session Manager Logging",
            managed_policies=[ec2_policy],
            role_name=f"SessionManagerEC2Role-{stack.region}",
        )

        self.instance_profile = iam.CfnInstanceProfile(
            self,
            "SessionManagerEC2InstanceProfile",
            roles=[self.ec2_role.role_name],
            instance_profile_name=f"SessionManagerEc2Role-{stack.region}",
        )

        # Interactive users need the session key too, separately from the instance role.
        iam.ManagedPolicy(
            self,
            "SessionManagerUserKMSPolicy",
            document=iam.PolicyDocument(
                statements=[
                    iam.PolicyStatement(
                        effect=iam.Effect.ALLOW,
                        actions=["kms:Decrypt", "kms:GenerateDataKey"],
                        resources=[self.session_key.key_arn],
                    )
                ]
            ),
            managed_policy_name=f"SessionManagerUserKMSPolicy-{stack.region}",
        )

        handler = self._get_or_create_handler()
        provider = self._get_or_create_provider(handler)
        handler_log_group = self._get_or_create_handler_log_group(
            handler, kms_key, log_retention_in_days
        )

        properties = {
            "s3BucketName": s3_bucket_name,
            "s3KeyPrefix": s3_key_prefix,
            "s3EncryptionEnabled": send_to_s3,
            "cloudWatchLogGroupName": self.log_group_name,
            "cloudWatchEncryptionEnabled": cloud_watch_encryption_enabled,
            "kmsKeyId": self.session_key.key_id,
        }
        resource = CustomResource(
            self,
            "Resource",
            resource_type="Custom::SsmSessionManagerSettings",
            service_token=provider.service_token,
            properties={k: v for k, v in properties.items() if v is not None},
        )
        resource.node.add_dependency(handler_log_group)

        self.settings_id = resource.ref

    def _logging_key(self, construct_id: str, alias: str) -> kms.Key:
        stack = self._stack
        key = kms.Key(
            self,
            construct_id,
            enable_key_rotation=True,
            description="AWS Accelerator Cloud Watch Logs CMK for Session Manager Logs",
            alias=alias,
        )
        key.add_to_resource_policy(
            iam.PolicyStatement(
                sid="Enable IAM User Permissions",
                principals=[iam.AccountRootPrincipal()],
                actions=["kms:*"],
                resources=["*"],
            )
        )
        key.add_to_resource_policy(
            iam.PolicyStatement(
                sid="Allow Cloud Watch Logs access",
                principals=[
                    iam.ServicePrincipal(
                        service_principal("logs", self._partition, stack.region)
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
                conditions={
                    "ArnLike": {
                        "kms:EncryptionContext:aws:logs:arn": (
                            f"arn:{stack.partition}:logs:{stack.region}:{stack.account}:*"
                        )
                    }
                },
            )
        )
        return key

    def _get_or_create_handler(self) -> _lambda.Function:
        stack = self._stack
        existing = stack.node.try_find_child(HANDLER_ID)
        if existing is not None:
            return existing

        handler = _lambda.Function(
            stack,
            HANDLER_ID,
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="session_manager_settings_handler.on_event",
            code=_lambda.Code.from_asset(LAMBDA_ASSET_DIR),
            timeout=Duration.minutes(1),
            description="Applies Session Manager logging preferences",
        )
        handler.add_to_role_policy(
            iam.PolicyStatement(
                actions=[
                    "ssm:DescribeDocument",
                    "ssm:CreateDocument",
                    "ssm:UpdateDocument",
                ],
                resources=[
                    f"arn:{stack.partition}:ssm:{stack.region}:{stack.account}:document/"
                    f"{SESSION_MANAGER_DOCUMENT_NAME}"
                ],
            )
        )
        return handler

    def _get_or_create_provider(self, handler: _lambda.IFunction) -> cr.Provider:
        stack = self._stack
        existing = stack.node.try_find_child(PROVIDER_ID)
        if existing is not None:
            return existing
        return cr.Provider(stack, PROVIDER_ID, on_event_handler=handler)

    def _get_or_create_handler_log_group(
        self,
        handler: _lambda.Function,
        kms_key: kms.IKey,
        log_retention_in_days: int,
    ) -> logs.CfnLogGroup:
        stack = self._stack
        existing = stack.node.try_find_child(HANDLER_LOG_GROUP_ID)
        if existing is not None:
            return existing

        log_group = logs.CfnLogGroup(
            stack,
            HANDLER_LOG_GROUP_ID,
            log_group_name=f"/aws/lambda/{handler.function_name}",
            retention_in_days=log_retention_in_days,
            kms_key_id=kms_key.key_arn,
        )
        log_group.apply_removal_policy(RemovalPolicy.DESTROY)
        return log_group
