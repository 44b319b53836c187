from __future__ import annotations

from typing import Any, Callable

from actions import applicants, blacklist, config_items, employees
from actions.auth_actions import get_me, session_validate
from utils import ApiError


Handler = Callable[[Any, Any, Any, Any], Any]

ACTION_HANDLERS: dict[str, Handler] = {
    "SESSION_VALIDATE": session_validate,
    "GET_ME": get_me,
    "ONBOARDING_CONFIG_GET": config_items.onboarding_config_get,
    "CONFIG_ITEMS_LIST": config_items.config_items_list,
    "CONFIG_ITEM_CREATE": config_items.config_item_create,
    "CONFIG_ITEM_UPDATE": config_items.config_item_update,
    "CONFIG_ITEM_TOGGLE": config_items.config_item_toggle,
    "CONFIG_ITEM_DELETE": config_items.config_item_delete,
    "CONFIG_ITEMS_REORDER": config_items.config_items_reorder,
    "CONFIG_CACHE_INVALIDATE": config_items.config_cache_invalidate,
    "APPLICANTS_LIST": applicants.applicants_list,
    "APPLICANT_GET": applicants.applicant_get,
    "APPLICANT_STATS": applicants.applicant_stats,
    "APPLICANT_CREATE": applicants.create_applicant,
    "APPLICANT_CRITERIA_UPDATE": applicants.update_criteria,
    "APPLICANT_QUESTIONS_UPDATE": applicants.update_questions,
    "APPLICANT_ONBOARDING_UPDATE": applicants.update_onboarding,
    "APPLICANT_ASSIGN_ROLES": applicants.assign_identity_roles_only,
    "APPLICANT_INVITE_CREATE": applicants.applicant_invite_create,
    "APPLICANT_COMPLETE": applicants.complete_applicant,
    "APPLICANT_REJECT": applicants.reject_applicant,
    "APPLICANT_DELETE": applicants.delete_applicant,
    "DISCORD_MEMBER_SEARCH": applicants.discord_member_search,
    "BLACKLIST_LIST": blacklist.blacklist_list,
    "BLACKLIST_CHECK": blacklist.blacklist_check,
    "BLACKLIST_STATS": blacklist.blacklist_stats,
    "BLACKLIST_CREATE": blacklist.blacklist_create,
    "BLACKLIST_UPDATE": blacklist.blacklist_update,
    "BLACKLIST_DELETE": blacklist.blacklist_delete,
    "EMPLOYEES_LIST": employees.employees_list,
    "EMPLOYEE_GET": employees.employee_get,
    "EMPLOYEE_TERMINATE": employees.employee_terminate,
}


def dispatch(action: str, data: Any, auth, db, cfg) -> Any:
    handler = ACTION_HANDLERS.get(str(action or "").upper().strip())
    if handler is None:
        raise ApiError("ACTION_NOT_IMPLEMENTED", f"Action not implemented: {action}")
    return handler(data, auth, db, cfg)
