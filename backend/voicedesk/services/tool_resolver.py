"""
Tool Resolver - which tools the model sees for a given mode and user.

resolve() is deterministic: the same mode, user and connected accounts give
an identical list, so the client can compare lists and skip redundant
session.update events. Shared catalog definitions are never modified; the
account-aware select_account description is built on a fresh copy.
"""
from typing import List, Optional

from voicedesk.models.account import Account
from voicedesk.models.session import Mode
from voicedesk.models.tool import ToolDefinition
from voicedesk.services import tool_catalog
from voicedesk.services.account_directory import AccountDirectory
from voicedesk.utils.logger import get_logger

logger = get_logger(__name__)

NO_ACCOUNTS_TEXT = "none connected"


def describe_accounts(accounts: List[Account]) -> str:
    if not accounts:
        return NO_ACCOUNTS_TEXT
    return ", ".join(account.email for account in accounts)


def with_accounts(tool: ToolDefinition, accounts: List[Account]) -> ToolDefinition:
    """Copy of `tool` with the accounts placeholder filled in."""
    description = tool.description.replace(tool_catalog.ACCOUNTS_PLACEHOLDER, describe_accounts(accounts))
    return tool.model_copy(update={"description": description}, deep=True)


class ToolResolver:
    """
    Computes the ordered tool list for (mode, user).

    Usage:
        resolver = ToolResolver(account_directory)
        tools = await resolver.resolve(Mode.EMAIL, user_id)
    """

    def __init__(self, accounts: AccountDirectory):
        self.accounts = accounts

    async def resolve(self, mode: Optional[Mode], user_id: Optional[str]) -> List[ToolDefinition]:
        """
        Resolve the tools to expose.

        - Meta tools always come first.
        - No mode: meta tools only.
        - Account-scoped mode without connected accounts: meta tools only.
          Callers detect the refusal by checking has_accounts or by the
          missing domain tools.
        - Otherwise: meta tools + the mode's tools.
        """
        meta = tool_catalog.meta_tools()
        accounts = await self.accounts.accounts_for_user(user_id)
        tools = [
            with_accounts(tool, accounts) if tool.name == tool_catalog.SELECT_ACCOUNT.name else tool
            for tool in meta
        ]

        if mode is None or mode == Mode.NONE:
            return tools

        if tool_catalog.is_account_scoped_mode(mode) and not accounts:
            logger.info(f"Mode '{mode.value}' needs a connected account; exposing meta tools only")
            return tools

        return tools + tool_catalog.tools_for(mode)

    async def resolve_names(self, mode: Optional[Mode], user_id: Optional[str]) -> List[str]:
        return [tool.name for tool in await self.resolve(mode, user_id)]
