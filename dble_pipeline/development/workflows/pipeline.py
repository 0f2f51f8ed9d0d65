"""
Development Pipeline Definition

13-stage software development pipeline: intake, planning, development, review.
Plan and review gates roll back to the planner/developer on rejection.
"""

from typing import List

from dble_pipeline.pipeline.stages import StageDefinition, PipelineSchema


DEV_PIPELINE_NAME = "development"

DEV_PIPELINE_STAGES: List[StageDefinition] = [
    StageDefinition(
        key="spec_intake",
        label="Spec Intake",
        executor_kind="human",
        description="Client/PM submits the specification: requirements, acceptance criteria, target repos.",
        category="Input",
    ),
    StageDefinition(
        key="setup",
        label="Setup",
        executor_kind="agent",
        description="Clone repos, set up branches, install dependencies, prepare environment.",
        category="Input",
    ),
    StageDefinition(
        key="planner",
        label="Planner",
        executor_kind="agent",
        description="AI analyzes the spec and codebase, creates an implementation plan.",
        category="Planning",
    ),
    StageDefinition(
        key="plan_reviewer",
        label="Plan Review",
        executor_kind="agent",
        description="AI reviews the plan for completeness, risks, and edge cases.",
        category="Planning",
        feedback_target="planner",
    ),
    StageDefinition(
        key="plan_approval",
        label="Plan Approval",
        executor_kind="human",
        description="FDE/FDM reviews and approves or rejects the plan.",
        category="Planning",
        approval_required=True,
        reject_target="planner",
    ),
    StageDefinition(
        key="developer",
        label="Developer",
        executor_kind="agent",
        description="AI writes the code based on the approved plan.",
        category="Development",
    ),
    StageDefinition(
        key="code_reviewer",
        label="Code Review",
        executor_kind="agent",
        description="AI reviews the code for quality, bugs, security, and best practices.",
        category="Development",
        feedback_target="developer",
    ),
    StageDefinition(
        key="validator",
        label="Validator",
        executor_kind="agent",
        description="Run tests, linters, type checks, and validate the implementation.",
        category="Development",
    ),
    StageDefinition(
        key="commit_pr",
        label="Commit & PR",
        executor_kind="human",
        description="Commit changes, push branch, create pull request.",
        category="Development",
    ),
    StageDefinition(
        key="deployer",
        label="Deploy",
        executor_kind="human",
        description="Deploy to staging/preview environment for review.",
        category="Development",
    ),
    StageDefinition(
        key="qa_review",
        label="QA Review",
        executor_kind="human",
        description="QA team tests the deployment, verifies acceptance criteria.",
        category="Review",
        approval_required=True,
        reject_target="developer",
        feedback_target="planner",
    ),
    StageDefinition(
        key="client_review",
        label="Client Review",
        executor_kind="human",
        description="Client reviews the feature and gives final approval.",
        category="Review",
        approval_required=True,
        reject_target="developer",
        feedback_target="qa_review",
    ),
    StageDefinition(
        key="done",
        label="Done",
        executor_kind="human",
        description="Merge PR, deploy to production, close ticket.",
        category="Review",
    ),
]

DEV_PIPELINE = PipelineSchema(DEV_PIPELINE_NAME, DEV_PIPELINE_STAGES)
