import asyncio
import logging

from pyrunbook import Agent, TaskRegistry, WorkflowDefinition, WorkflowEngine, step

logging.basicConfig(level=logging.CRITICAL)


def validate(ctx):
    value = ctx["value"]
    if value < 0:
        raise ValueError(f"negative value: {value}")
    return value


class DataPipeline(WorkflowDefinition):
    steps = [
        step("validate", handler=validate),
        step("transform", handler=lambda ctx: ctx["validate"] * 2),
        step("flag_large", handler=lambda ctx: "large", when=lambda ctx: ctx["transform"] > 50),
        step("report", handler=lambda ctx: f"{ctx['id']}: {ctx['transform']}"),
    ]


def print_step(entry):
    print(f"  {entry.step_name}: {entry.output!r} ({entry.duration_ms:.2f}ms)")


async def main():
    agent = Agent(WorkflowEngine(TaskRegistry.with_defaults()))

    for data_id, value in [("data_001", 42), ("data_002", 7), ("data_003", -1)]:
        print(f"Running {data_id}")
        result = await agent.run_workflow(DataPipeline, {"id": data_id, "value": value}, print_step)
        if result.is_completed:
            print(f"  -> {result.final_output}")
        else:
            print(f"  -> {result.error_message}")


if __name__ == "__main__":
    asyncio.run(main())
