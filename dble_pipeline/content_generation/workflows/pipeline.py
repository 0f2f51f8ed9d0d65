"""
Content Generation Pipeline Definition

14-stage pipeline with stage metadata, executor kinds, approval gates and
feedback loops. This is the single source of truth for the pipeline structure.

Categories: Input, Content Generation, Review & Publish, Analysis
"""

from typing import List

from dble_pipeline.pipeline.stages import StageDefinition, PipelineSchema


CONTENT_PIPELINE_NAME = "content"

CONTENT_PIPELINE_STAGES: List[StageDefinition] = [
    # --- Input ---
    StageDefinition(
        key="strategy_assets",
        label="Strategy & Assets",
        executor_kind="human",
        description="Define brand goals and gather Shopify assets to guide content direction.",
        category="Input",
    ),
    StageDefinition(
        key="scheduling",
        label="Scheduling",
        executor_kind="human",
        description="Plan the content calendar.",
        category="Input",
    ),
    StageDefinition(
        key="research",
        label="Research",
        executor_kind="agent",
        description="Discover trends and identify patterns relevant to your audience.",
        category="Input",
    ),
    # --- Content Generation ---
    StageDefinition(
        key="concepts",
        label="Concepts",
        executor_kind="agent",
        description="Generate ideas and develop scripts for content pieces.",
        category="Content Generation",
    ),
    StageDefinition(
        key="content_generation",
        label="Content Generation",
        executor_kind="agent",
        description="Produce videos, images, and voiceovers using AI.",
        category="Content Generation",
    ),
    StageDefinition(
        key="simulation_testing",
        label="Simulation & Testing",
        executor_kind="agent",
        description="Model audience personas and run A/B testing to predict content performance.",
        category="Content Generation",
    ),
    # --- Review & Publish ---
    StageDefinition(
        key="brand_qa",
        label="Brand QA",
        executor_kind="human",
        description="Ensure content aligns with brand guidelines and safety requirements.",
        category="Review & Publish",
        approval_required=True,
        reject_target="concepts",
    ),
    StageDefinition(
        key="fdm_review",
        label="FDM Review",
        executor_kind="human",
        description="Team members review, edit, or override AI decisions and run compliance checks.",
        category="Review & Publish",
        approval_required=True,
        reject_target="concepts",
    ),
    StageDefinition(
        key="publish",
        label="Publish",
        executor_kind="auto",
        description="Deploy content across channels (3 reels/week, daily stories).",
        category="Review & Publish",
    ),
    # --- Analysis ---
    StageDefinition(
        key="metrics",
        label="Metrics",
        executor_kind="auto",
        description="Track performance data and ROI for each piece of content.",
        category="Analysis",
    ),
    StageDefinition(
        key="analytics",
        label="Analytics",
        executor_kind="agent",
        description="Generate insights and build predictive models from the data.",
        category="Analysis",
        feedback_target="scheduling",  # Learning loop: Analytics -> Scheduling
    ),
    StageDefinition(
        key="channel_learning",
        label="Channel-Specific Learning",
        executor_kind="agent",
        description="Adapt strategies based on what works on each platform.",
        category="Analysis",
    ),
    StageDefinition(
        key="ab_testing",
        label="A/B Testing",
        executor_kind="agent",
        description="Test content variations to identify top performers and optimize future content.",
        category="Analysis",
    ),
    StageDefinition(
        key="reinforcement_learning",
        label="Reinforcement Learning",
        executor_kind="auto",
        description="Continuously fine-tune the system to improve future outputs.",
        category="Analysis",
        feedback_target="research",  # Learning loop: RL -> Research
    ),
]

CONTENT_PIPELINE = PipelineSchema(CONTENT_PIPELINE_NAME, CONTENT_PIPELINE_STAGES)
