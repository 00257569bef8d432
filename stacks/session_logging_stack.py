from aws_cdk import (
    CfnOutput,
    Stack,
    aws_kms as kms,
    aws_ssm as ssm,
)
from constructs import Construct

from stacks.config import AcceleratorConfig
from stacks.key_stack import KeyStack
from stacks.session_manager_settings import SessionManagerSettings


class SessionLoggingStack(Stack):
    """Session Manager logging for one region.

    The shared accelerator key is resolved through its published parameter
    and encrypts the settings handler log group.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: AcceleratorConfig,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        accelerator_key = kms.Key.from_key_arn(
            self,
            "AcceleratorKey",
            ssm.StringParameter.value_for_string_parameter(
                self, KeyStack.ACCELERATOR_KEY_ARN_PARAMETER_NAME
            ),
        )

        session_manager = config.session_manager
        self.settings = SessionManagerSettings(
            self,
            "SessionManagerSettings",
            send_to_s3=session_manager.send_to_s3,
            send_to_cloud_watch_logs=session_manager.send_to_cloud_watch_logs,
            cloud_watch_encryption_enabled=session_manager.cloud_watch_encryption_enabled,
            kms_key=accelerator_key,
            log_retention_in_days=session_manager.log_retention_in_days,
            partition=config.partition,
            s3_bucket_name=session_manager.s3_bucket_name,
            s3_key_prefix=session_manager.s3_key_prefix,
            s3_bucket_key_arn=session_manager.s3_bucket_key_arn,
        )

        CfnOutput(
            self,
            "SessionManagerInstanceProfileName",
            value=self.settings.instance_profile.ref,
        )

        CfnOutput(
            self,
            "SessionManagerSessionKeyArn",
            value=self.settings.session_key.key_arn,
        )
