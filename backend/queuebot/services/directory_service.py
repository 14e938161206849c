# /queuebot/services/directory_service.py

import asyncio
import logging
from typing import List

from queuebot.config.settings import settings
from queuebot.models.directory import MenuItem

logger = logging.getLogger(__name__)

# Numbered menus for the selection funnel. Numbers are positions in the
# freshly fetched list (ordered by name), so they are only meaningful for the
# menu the customer was just shown.


def format_branch_list(items: List[MenuItem]) -> str:
    lines = ""
    for item in items:
        lines += f"{item.number}️⃣ {item.name}\n"
        if item.address:
            lines += f"   📍 {item.address}\n"
    return lines.strip()


def format_department_list(items: List[MenuItem]) -> str:
    lines = ""
    for item in items:
        lines += f"{item.number}️⃣ {item.name}\n"
        if item.description:
            lines += f"   {item.description}\n"
    return lines.strip()


def format_service_list(items: List[MenuItem]) -> str:
    lines = ""
    for item in items:
        wait = f" ({item.estimated_wait_time})" if item.estimated_wait_time else ""
        lines += f"{item.number}️⃣ {item.name}{wait}\n"
        if item.description:
            lines += f"   📝 {item.description}\n"
    return lines.strip()


def find_item(items: List[MenuItem], number: int) -> MenuItem | None:
    return next((item for item in items if item.number == number), None)


class DirectoryService:
    def __init__(self, db, wait_times):
        self.db = db
        self.wait_times = wait_times

    async def branch_menu(self, organization_id: str) -> List[MenuItem]:
        branches = await self.db.list_branches(organization_id)
        return [
            MenuItem(number=index, id=branch.id, name=branch.name, address=branch.address)
            for index, branch in enumerate(branches, start=1)
        ]

    async def department_menu(self, branch_id: str) -> List[MenuItem]:
        departments = await self.db.list_departments(branch_id)
        return [
            MenuItem(number=index, id=department.id, name=department.name, description=department.description)
            for index, department in enumerate(departments, start=1)
        ]

    async def service_menu(self, department_id: str) -> List[MenuItem]:
        """Active services of the department, each with its estimated wait."""
        services = await self.db.list_active_services(department_id)
        waits = await asyncio.gather(*[
            self.wait_times.estimate_wait(
                service.id, department_id, service.estimated_time or settings.default_service_minutes
            )
            for service in services
        ])
        return [
            MenuItem(
                number=index,
                id=service.id,
                name=service.name,
                description=service.description,
                estimated_wait_time=wait,
            )
            for index, (service, wait) in enumerate(zip(services, waits), start=1)
        ]
