#!/usr/bin/env python3
"""CLI entry point for the scene batch generator."""

import json
import sys

import click

from config import configure_logging, paths, settings
from placeholder import extract_keys
from prompt_composer import SceneNotFoundError, compose_prompts
from server.job_store import JobStore
from services.project_service import ProjectNotFoundError, ProjectService


@click.group()
def main():
    """
    Compose scene prompts and run the sequential image generation queue.

    Example:
        python cli.py serve --port 8000
        python cli.py preview 1 --scene 3
        python cli.py status
    """


@main.command()
@click.option('--host', default=None, help='Bind address (default: 127.0.0.1)')
@click.option('--port', default=None, type=int, help='Port to listen on (default: 8000)')
@click.option('--log-level', default=None, help='Console log level (default: INFO)')
def serve(host: str | None, port: int | None, log_level: str | None):
    """Start the web server and the generation worker."""
    import uvicorn

    configure_logging(level=log_level)
    uvicorn.run(
        "server.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
    )


@main.command()
@click.argument('project_id', type=int)
@click.option('--scene', 'scene_id', type=int, default=None, help='Scene to resolve placeholders for')
def preview(project_id: int, scene_id: int | None):
    """Print the composed prompts for a project scene."""
    service = ProjectService(paths.projects_dir)
    try:
        project = service.get_project(project_id)
        prompts = compose_prompts(project, scene_id)
    except (ProjectNotFoundError, SceneNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    templates = [project.general_prompt, project.negative_prompt]
    for character in project.characters:
        templates.extend([character.prompt, character.negative])
    keys = []
    for template in templates:
        for key in extract_keys(template):
            if key not in keys:
                keys.append(key)

    click.echo(f"Placeholders: {', '.join(keys) if keys else '(none)'}")
    click.echo(json.dumps(prompts.model_dump(), indent=2, ensure_ascii=False))


@main.command()
@click.option('--project', 'project_id', type=int, default=None, help='Only show jobs of this project')
@click.option('--all', 'show_all', is_flag=True, help='Include finished jobs')
def status(project_id: int | None, show_all: bool):
    """Show jobs from the persisted queue."""
    store = JobStore(paths.queue_path)
    jobs = store.list_history(project_id, limit=None) if show_all else store.list_active(project_id)

    if not jobs:
        click.echo("No jobs")
        return

    for job in jobs:
        scope = f"project {job.project_id}" if job.project_id is not None else "quick"
        if job.project_scene_id is not None:
            scope += f" scene {job.project_scene_id}"
        line = f"{job.id[:8]}  {job.status.value:<9}  {job.completed_count}/{job.total_count}  {scope}"
        if job.error_message:
            line += f"  ({job.error_message})"
        click.echo(line)


if __name__ == "__main__":
    main()
