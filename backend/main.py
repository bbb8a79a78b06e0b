#!/usr/bin/env python3
"""
Compoza Update Engine - command line entry point

Commands:
    check                 Check images of running containers for updates
    update-all NAME...    Update compose projects through the Compoza API,
                          leaving the project hosting Compoza for last
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Dict, List, Set

import aiohttp
import docker
from docker.errors import DockerException

from batch_manager import BatchUpdateCoordinator
from config.paths import ensure_data_dirs
from config.settings import AppConfig, setup_logging
from tasks.background import TaskList
from tasks.project_update import UpdateProjectArgs, make_project_update_operation
from tasks.runner import BackgroundOperationRunner
from updates.cache import get_update_cache
from updates.engine import DockerSDKEngine
from updates.update_checker import ImageUpdateChecker
from utils.async_docker import async_docker_call
from utils.background import drain_detached_tasks
from utils.self_project import get_self_project_name

logger = logging.getLogger(__name__)


async def running_images(client: docker.DockerClient) -> Dict[str, Set[str]]:
    """Map image name → image IDs of the running containers using it."""
    containers = await async_docker_call(client.containers.list)
    images: Dict[str, Set[str]] = {}
    for container in containers:
        name = (container.attrs.get("Config") or {}).get("Image")
        image_id = container.attrs.get("Image")
        if name:
            images.setdefault(name, set())
            if image_id:
                images[name].add(image_id)
    return images


async def check_command(args) -> int:
    client = docker.from_env()
    cache = get_update_cache()
    cache.start()

    try:
        async with aiohttp.ClientSession() as session:
            checker = ImageUpdateChecker(cache=cache, engine=DockerSDKEngine(client), session=session)
            images = await running_images(client)
            logger.info(f"Checking {len(images)} images for updates")
            results = await checker.check_image_updates(images)
            # Let version resolution finish before the session closes
            await drain_detached_tasks()
    finally:
        await cache.stop()

    if args.json:
        payload = [r.model_dump() for r in results]
        for item in payload:
            cached = cache.get_cached_update(item["image"])
            if cached:
                item["current_version"] = cached.current_version
                item["latest_version"] = cached.latest_version
        print(json.dumps(payload, indent=2, default=str))
    else:
        for r in sorted(results, key=lambda r: r.image):
            marker = "UPDATE" if r.update_available else r.status
            print(f"{r.image:60} {marker}")
    return 0


async def update_all_command(args) -> int:
    client = docker.from_env()
    tasks = TaskList()
    cache = get_update_cache()
    cache.start()

    try:
        async with aiohttp.ClientSession() as session:
            runner = BackgroundOperationRunner(
                make_project_update_operation(session, AppConfig.API_BASE_URL, cache),
                tasks,
                session=session,
                health_url=f"{AppConfig.API_BASE_URL.rstrip('/')}/api/health",
            )

            async def update_project(name: str) -> bool:
                return await runner.execute(UpdateProjectArgs(project_name=name, rebuild=args.rebuild))

            def print_event(event):
                if event["type"] == "error":
                    print(f"✗ {event['project']}: {event['message']}")
                elif event["type"] == "complete":
                    print(f"✓ {event['project']}")

            coordinator = BatchUpdateCoordinator(
                update_project,
                lambda: get_self_project_name(client),
                on_event=print_event,
            )
            summary = await coordinator.start(args.projects)
    finally:
        await cache.stop()

    print(f"{len(summary.updated)} updated, {len(summary.failed)} failed")
    return 1 if summary.failed else 0


def main(argv: List[str] = None) -> int:
    parser = argparse.ArgumentParser(description="Compoza image update engine")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Check running containers for image updates")
    check.add_argument("--json", action="store_true", help="Print results as JSON")

    update_all = sub.add_parser("update-all", help="Update compose projects")
    update_all.add_argument("projects", nargs="+", help="Project names")
    update_all.add_argument("--rebuild", action="store_true", help="Rebuild images on restart")

    args = parser.parse_args(argv)

    AppConfig.validate()
    ensure_data_dirs()
    setup_logging()

    command = check_command if args.command == "check" else update_all_command
    return asyncio.run(command(args))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nOperation cancelled.")
        sys.exit(1)
    except DockerException as e:
        print(f"Error: cannot reach Docker: {e}")
        sys.exit(1)
