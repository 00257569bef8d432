#!/usr/bin/env python3
import os

import aws_cdk as cdk
from cdk_nag import AwsSolutionsChecks

from stacks.config import AcceleratorConfig
from stacks.key_stack import KeyStack
from stacks.session_logging_stack import SessionLoggingStack

app = cdk.App()

config = AcceleratorConfig.from_env()

env = cdk.Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION", "us-east-1"),
)

key_stack = KeyStack(
    app,
    os.getenv("KEY_STACK_NAME", "AWSAccelerator-KeyStack"),
    config=config,
    env=env,
)

session_logging_stack = SessionLoggingStack(
    app,
    os.getenv("SESSION_LOGGING_STACK_NAME", "AWSAccelerator-SessionLoggingStack"),
    config=config,
    env=env,
)
# The settings handler log group is encrypted with the key published by KeyStack.
session_logging_stack.add_dependency(key_stack)

nag_enabled = (os.getenv("CDK_NAG_ENABLED") or "").strip().lower() in {
    "1",
    "true",
    "yes",
}
if nag_enabled:
    cdk.Aspects.of(app).add(AwsSolutionsChecks(verbose=True))

app.synth()
