"""MCP tools for hh-mcp-server.

Each tool is a thin pass-through to one HeadHunter API method. The caller's
bearer token is taken from the HTTP request that carried the tool call and
forwarded to HeadHunter as-is.
"""

import json
import logging
from typing import Any, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from hh_client import HHClient, UpstreamError, UpstreamRejected

logger = logging.getLogger(__name__)

INSTRUCTIONS = "MCP Server for HeadHunter API - job search, resumes and negotiations"


def bearer_token(ctx: Context) -> Optional[str]:
    """Bearer token of the HTTP request carrying the current tool call.

    None over stdio, where no HTTP request exists; only public HeadHunter
    methods work there.
    """
    try:
        request = ctx.request_context.request
    except ValueError:
        # Tool invoked outside an MCP request
        return None
    if request is None:
        return None
    auth_header = request.headers.get("authorization", "")
    if auth_header[:7].lower() != "bearer ":
        return None
    return auth_header[7:].strip() or None


def handle_result(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


async def call_api(
    hh_client: HHClient,
    ctx: Context,
    method: str,
    path: str,
    params: dict = None,
    data: dict = None,
) -> str:
    try:
        result = await hh_client.request(method, path, token=bearer_token(ctx), params=params, data=data)
    except UpstreamRejected as e:
        logger.warning(f"[TOOL] {method} {path} rejected: {e.status_code}")
        raise ToolError(f"API Error: {e.description}") from e
    except UpstreamError as e:
        raise ToolError(f"Error: {e}") from e

    logger.info(f"[TOOL] {method} {path} ok")
    if result is None:
        return handle_result({"status": "ok"})
    return handle_result(result)


def create_mcp_server(hh_client: HHClient) -> FastMCP:
    """Build the FastMCP server with every HeadHunter tool registered."""
    mcp = FastMCP("hh-mcp-server", instructions=INSTRUCTIONS)

    # ============== Vacancies ==============

    @mcp.tool(name="get-vacancies", description="Search for vacancies")
    async def get_vacancies(
        ctx: Context,
        text: Optional[str] = None,
        search_field: Optional[str] = None,
        area: Optional[str] = None,
        experience: Optional[str] = None,
        employment: Optional[str] = None,
        schedule: Optional[str] = None,
        professional_role: Optional[str] = None,
        industry: Optional[str] = None,
        employer_id: Optional[str] = None,
        salary: Optional[int] = None,
        currency: Optional[str] = None,
        only_with_salary: Optional[bool] = None,
        period: Optional[int] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        order_by: Optional[str] = None,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> str:
        params = {
            "text": text,
            "search_field": search_field,
            "area": area,
            "experience": experience,
            "employment": employment,
            "schedule": schedule,
            "professional_role": professional_role,
            "industry": industry,
            "employer_id": employer_id,
            "salary": salary,
            "currency": currency,
            "only_with_salary": only_with_salary,
            "period": period,
            "date_from": date_from,
            "date_to": date_to,
            "order_by": order_by,
            "page": page,
            "per_page": per_page,
        }
        return await call_api(hh_client, ctx, "GET", "/vacancies", params=params)

    @mcp.tool(name="get-vacancy", description="View a vacancy")
    async def get_vacancy(ctx: Context, vacancy_id: str) -> str:
        return await call_api(hh_client, ctx, "GET", f"/vacancies/{vacancy_id}")

    @mcp.tool(name="get-vacancies-similar-to-vacancy", description="Search for vacancies similar to a vacancy")
    async def get_vacancies_similar_to_vacancy(
        ctx: Context,
        vacancy_id: str,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> str:
        return await call_api(
            hh_client, ctx, "GET", f"/vacancies/{vacancy_id}/similar_vacancies",
            params={"page": page, "per_page": per_page},
        )

    @mcp.tool(name="get-vacancies-similar-to-resume", description="Search for vacancies similar to a resume")
    async def get_vacancies_similar_to_resume(
        ctx: Context,
        resume_id: str,
        text: Optional[str] = None,
        area: Optional[str] = None,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> str:
        return await call_api(
            hh_client, ctx, "GET", f"/resumes/{resume_id}/similar_vacancies",
            params={"text": text, "area": area, "page": page, "per_page": per_page},
        )

    @mcp.tool(name="get-favorite-vacancies", description="List of favorite vacancies")
    async def get_favorite_vacancies(
        ctx: Context,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> str:
        return await call_api(
            hh_client, ctx, "GET", "/vacancies/favorited",
            params={"page": page, "per_page": per_page},
        )

    @mcp.tool(name="add-vacancy-to-favorite", description="Add a vacancy to favorites")
    async def add_vacancy_to_favorite(ctx: Context, vacancy_id: str) -> str:
        return await call_api(hh_client, ctx, "PUT", f"/vacancies/favorited/{vacancy_id}")

    @mcp.tool(name="delete-vacancy-from-favorite", description="Delete a vacancy from favorites")
    async def delete_vacancy_from_favorite(ctx: Context, vacancy_id: str) -> str:
        return await call_api(hh_client, ctx, "DELETE", f"/vacancies/favorited/{vacancy_id}")

    # ============== Employers ==============

    @mcp.tool(name="search-employer", description="Employer search")
    async def search_employer(
        ctx: Context,
        text: Optional[str] = None,
        area: Optional[str] = None,
        type: Optional[str] = None,
        only_with_vacancies: Optional[bool] = None,
        sort_by: Optional[str] = None,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
    ) -> str:
        params = {
            "text": text,
            "area": area,
            "type": type,
            "only_with_vacancies": only_with_vacancies,
            "sort_by": sort_by,
            "page": page,
            "per_page": per_page,
        }
        return await call_api(hh_client, ctx, "GET", "/employers", params=params)

    @mcp.tool(name="get-employer-info", description="Employer info")
    async def get_employer_info(ctx: Context, employer_id: str) -> str:
        return await call_api(hh_client, ctx, "GET", f"/employers/{employer_id}")

    # ============== Dictionaries ==============

    @mcp.tool(name="get-dictionaries", description="Directories of fields")
    async def get_dictionaries(ctx: Context) -> str:
        return await call_api(hh_client, ctx, "GET", "/dictionaries")

    @mcp.tool(name="get-areas", description="Tree view of all regions")
    async def get_areas(ctx: Context, additional_case: Optional[str] = None) -> str:
        return await call_api(hh_client, ctx, "GET", "/areas", params={"additional_case": additional_case})

    @mcp.tool(name="get-professional-roles-dictionary", description="Professional role directory")
    async def get_professional_roles_dictionary(ctx: Context) -> str:
        return await call_api(hh_client, ctx, "GET", "/professional_roles")

    # ============== Current user and resumes ==============

    @mcp.tool(name="get-current-user-info", description="Info on current authorized user")
    async def get_current_user_info(ctx: Context) -> str:
        return await call_api(hh_client, ctx, "GET", "/me")

    @mcp.tool(name="get-mine-resumes", description="List of resumes for current user")
    async def get_mine_resumes(ctx: Context) -> str:
        return await call_api(hh_client, ctx, "GET", "/resumes/mine")

    @mcp.tool(name="get-resume", description="View a resume")
    async def get_resume(ctx: Context, resume_id: str) -> str:
        return await call_api(hh_client, ctx, "GET", f"/resumes/{resume_id}")

    @mcp.tool(name="publish-resume", description="Publish or update a resume")
    async def publish_resume(ctx: Context, resume_id: str) -> str:
        return await call_api(hh_client, ctx, "POST", f"/resumes/{resume_id}/publish")

    # ============== Negotiations ==============

    @mcp.tool(name="get-negotiations", description="List of responses/invitations")
    async def get_negotiations(
        ctx: Context,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
        order_by: Optional[str] = None,
        order: Optional[str] = None,
        vacancy_id: Optional[str] = None,
        status: Optional[str] = None,
        has_updates: Optional[bool] = None,
    ) -> str:
        params = {
            "page": page,
            "per_page": per_page,
            "order_by": order_by,
            "order": order,
            "vacancy_id": vacancy_id,
            "status": status,
            "has_updates": has_updates,
        }
        return await call_api(hh_client, ctx, "GET", "/negotiations", params=params)

    @mcp.tool(name="apply-to-vacancy", description="Apply for a vacancy")
    async def apply_to_vacancy(
        ctx: Context,
        vacancy_id: str,
        resume_id: str,
        message: Optional[str] = None,
    ) -> str:
        data = {"vacancy_id": vacancy_id, "resume_id": resume_id, "message": message}
        return await call_api(hh_client, ctx, "POST", "/negotiations", data=data)

    @mcp.tool(name="get-negotiation-messages", description="View the list of messages in the response")
    async def get_negotiation_messages(ctx: Context, nid: str) -> str:
        return await call_api(hh_client, ctx, "GET", f"/negotiations/{nid}/messages")

    @mcp.tool(name="send-negotiation-message", description="Sending new message")
    async def send_negotiation_message(ctx: Context, nid: str, message: str) -> str:
        return await call_api(
            hh_client, ctx, "POST", f"/negotiations/{nid}/messages",
            data={"message": message},
        )

    return mcp
