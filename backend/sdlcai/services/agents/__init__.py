"""Agent registry: which remote agents exist and what each one consumes.

Agents are dispatched by the PipelineController in pipeline_controller.py.
"""
