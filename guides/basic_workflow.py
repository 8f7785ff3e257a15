"""Simple example showing a workflow run with custom actions."""

import asyncio

from stepgraph import (
    ActionRegistry,
    ExecutionEngine,
    Workflow,
    register_builtin_actions,
)

registry = register_builtin_actions(ActionRegistry())


@registry.action("create-account")
async def create_account(action, ctx):
    await asyncio.sleep(0.01)
    return {"account_id": f"acct-{ctx.variables['customer_id']}"}


@registry.action("send-notification")
def send_notification(action, ctx):
    return f"{action.config['type']} sent to {ctx.variables['customer_id']}"


workflow = Workflow.model_validate(
    {
        "id": "onboarding",
        "name": "Customer onboarding",
        "start_step_id": "create",
        "end_step_ids": ["notify", "skip"],
        "variables": [
            {"name": "customer_id", "required": True},
            {"name": "plan", "default": "basic"},
        ],
        "steps": [
            {
                "id": "create",
                "kind": "action",
                "action": {
                    "type": "create-account",
                    "output_variable": "account",
                    "retry_policy": {"max_attempts": 3, "initial_delay": 100},
                },
                "transitions": [{"to": "premium"}],
            },
            {
                "id": "premium",
                "kind": "condition",
                "condition": {"type": "simple", "operator": "equals", "left": "${plan}", "right": "premium"},
                "transitions": [
                    {"to": "notify", "label": "true"},
                    {"to": "skip", "label": "false"},
                ],
            },
            {
                "id": "notify",
                "kind": "action",
                "action": {"type": "send-notification", "config": {"type": "welcome"}},
            },
            {"id": "skip", "kind": "action", "action": {"type": "noop"}},
        ],
    }
)


async def main():
    """Run the onboarding workflow once."""
    engine = ExecutionEngine(action_executor=registry)

    execution = await engine.execute(
        workflow, {"variables": {"customer_id": "cust-123", "plan": "premium"}}
    )

    print(f"Execution {execution.id}: {execution.status.value}")
    for step_execution in execution.step_executions:
        print(f"  {step_execution.step_id}: {step_execution.output}")
    print(f"Account: {execution.context.variables['account']}")


if __name__ == "__main__":
    asyncio.run(main())
