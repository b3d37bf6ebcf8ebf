"""Post/comment API endpoints.

Provides routes for:
- Post CRUD, scoped to a town
- Comment CRUD and the nested comment tree of a post
- Post attachments (upload, download, delete)

Every JSON response is a ``{isOK, response, message}`` envelope.
"""

from typing import Annotated
from urllib.parse import quote

import structlog
from fastapi import APIRouter, File, Response, UploadFile, status

from posttown.files import FileMetadata
from posttown.files.models import DEFAULT_CONTENT_TYPE

from .dependencies import ControllerDep, SessionToken, handle_posttown_error
from .errors import PostTownError
from .schemas import (
    CommentResponse,
    CommentTreeResponse,
    CreateCommentRequest,
    CreatePostRequest,
    FileDeletedResponse,
    PostResponse,
    ResponseEnvelope,
    UpdateCommentRequest,
    UpdatePostRequest,
)


logger = structlog.get_logger(__name__)


router = APIRouter(prefix="/v1/towns/{town_id}", tags=["posts"])


# ==============================================================================
# Posts
# ==============================================================================


@router.post(
    "/posts",
    response_model=ResponseEnvelope[PostResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create post",
)
async def create_post(
    data: CreatePostRequest,
    controller: ControllerDep,
    token: SessionToken,
) -> ResponseEnvelope[PostResponse]:
    """Create a post anchored at the given coordinates.

    Title and content are moderated. With a session token, the session's
    identity becomes the owner.
    """
    try:
        post = await controller.create_post(data.post.to_entity(), token)
        return ResponseEnvelope.ok(PostResponse.from_entity(post))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.get(
    "/posts",
    response_model=ResponseEnvelope[list[PostResponse]],
    summary="List town posts",
)
async def list_posts(
    controller: ControllerDep,
) -> ResponseEnvelope[list[PostResponse]]:
    """Get every post of the town, unpaginated."""
    try:
        posts = await controller.get_all_posts()
        return ResponseEnvelope.ok([PostResponse.from_entity(p) for p in posts])
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.get(
    "/posts/{post_id}",
    response_model=ResponseEnvelope[PostResponse],
    summary="Get post",
)
async def get_post(
    post_id: str, controller: ControllerDep
) -> ResponseEnvelope[PostResponse]:
    try:
        post = await controller.get_post(post_id)
        return ResponseEnvelope.ok(PostResponse.from_entity(post))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.patch(
    "/posts/{post_id}",
    response_model=ResponseEnvelope[PostResponse],
    summary="Update post",
)
async def update_post(
    post_id: str,
    data: UpdatePostRequest,
    controller: ControllerDep,
    token: SessionToken,
) -> ResponseEnvelope[PostResponse]:
    """Update title, content or visibility. Owner only."""
    try:
        post = await controller.update_post(post_id, data.post.to_changes(), token)
        return ResponseEnvelope.ok(PostResponse.from_entity(post))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.delete(
    "/posts/{post_id}",
    response_model=ResponseEnvelope[PostResponse],
    summary="Delete post",
)
async def delete_post(
    post_id: str,
    controller: ControllerDep,
    token: SessionToken,
) -> ResponseEnvelope[PostResponse]:
    """Delete a post, its comments and its attachment. Owner only.

    Deleting a post that no longer exists succeeds with a null response.
    """
    try:
        post = await controller.delete_post(post_id, token)
        return ResponseEnvelope.ok(PostResponse.from_entity(post) if post else None)
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.get(
    "/posts/{post_id}/comments",
    response_model=ResponseEnvelope[list[CommentTreeResponse]],
    summary="Get comment tree",
)
async def get_comment_tree(
    post_id: str, controller: ControllerDep
) -> ResponseEnvelope[list[CommentTreeResponse]]:
    """Get the post's comments nested as trees, in stored order."""
    try:
        forest = await controller.get_comment_tree(post_id)
        return ResponseEnvelope.ok(CommentTreeResponse.from_forest(forest))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


# ==============================================================================
# Attachments
# ==============================================================================


@router.put(
    "/posts/{post_id}/file",
    response_model=ResponseEnvelope[PostResponse],
    summary="Attach file to post",
)
async def attach_file(
    post_id: str,
    controller: ControllerDep,
    token: SessionToken,
    file: Annotated[UploadFile, File(description="File to attach")],
) -> ResponseEnvelope[PostResponse]:
    """Upload a file for the post, replacing any previous one. Owner only."""
    logger.info(
        "file_attach_request",
        post_id=post_id,
        filename=file.filename,
        content_type=file.content_type,
    )

    try:
        content = await file.read()
        post = await controller.attach_file(
            post_id,
            content,
            FileMetadata(
                filename=file.filename or "upload",
                content_type=file.content_type or DEFAULT_CONTENT_TYPE,
                size=len(content),
            ),
            token,
        )
        return ResponseEnvelope.ok(PostResponse.from_entity(post))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.get(
    "/posts/{post_id}/file",
    response_class=Response,
    summary="Download post file",
)
async def get_file(post_id: str, controller: ControllerDep) -> Response:
    """Stream the attachment bytes with their content type and filename."""
    try:
        stored = await controller.get_file(post_id)
    except PostTownError as e:
        raise handle_posttown_error(e) from e

    filename = quote(stored.metadata.filename)
    return Response(
        content=stored.content,
        media_type=stored.metadata.content_type,
        headers={"Content-Disposition": f"inline; filename*=UTF-8''{filename}"},
    )


@router.delete(
    "/posts/{post_id}/file",
    response_model=ResponseEnvelope[FileDeletedResponse],
    summary="Delete post file",
)
async def delete_file(
    post_id: str,
    controller: ControllerDep,
    token: SessionToken,
) -> ResponseEnvelope[FileDeletedResponse]:
    try:
        file_id, deleted = await controller.delete_file(post_id, token)
        return ResponseEnvelope.ok(
            FileDeletedResponse(file_id=file_id, deleted=deleted)
        )
    except PostTownError as e:
        raise handle_posttown_error(e) from e


# ==============================================================================
# Comments
# ==============================================================================


@router.post(
    "/comments",
    response_model=ResponseEnvelope[CommentResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create comment",
)
async def create_comment(
    data: CreateCommentRequest,
    controller: ControllerDep,
    token: SessionToken,
) -> ResponseEnvelope[CommentResponse]:
    """Comment on a post, or reply to a comment when parentCommentID is set."""
    try:
        comment = await controller.create_comment(data.comment.to_entity(), token)
        return ResponseEnvelope.ok(CommentResponse.from_entity(comment))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.get(
    "/comments/{comment_id}",
    response_model=ResponseEnvelope[CommentResponse],
    summary="Get comment",
)
async def get_comment(
    comment_id: str, controller: ControllerDep
) -> ResponseEnvelope[CommentResponse]:
    try:
        comment = await controller.get_comment(comment_id)
        return ResponseEnvelope.ok(CommentResponse.from_entity(comment))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.patch(
    "/comments/{comment_id}",
    response_model=ResponseEnvelope[CommentResponse],
    summary="Update comment",
)
async def update_comment(
    comment_id: str,
    data: UpdateCommentRequest,
    controller: ControllerDep,
    token: SessionToken,
) -> ResponseEnvelope[CommentResponse]:
    """Edit a comment's content. Owner only."""
    try:
        comment = await controller.update_comment(
            comment_id, data.comment.to_changes(), token
        )
        return ResponseEnvelope.ok(CommentResponse.from_entity(comment))
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.delete(
    "/comments/{comment_id}",
    response_model=ResponseEnvelope[CommentResponse],
    summary="Delete comment",
)
async def delete_comment(
    comment_id: str,
    controller: ControllerDep,
    token: SessionToken,
) -> ResponseEnvelope[CommentResponse]:
    """Delete a comment and every reply under it. Owner only."""
    try:
        comment = await controller.delete_comment(comment_id, token)
        return ResponseEnvelope.ok(
            CommentResponse.from_entity(comment) if comment else None
        )
    except PostTownError as e:
        raise handle_posttown_error(e) from e


@router.post(
    "/comments/{comment_id}/relink",
    response_model=ResponseEnvelope[CommentResponse],
    summary="Relink orphaned comment",
)
async def relink_comment(
    comment_id: str, controller: ControllerDep
) -> ResponseEnvelope[CommentResponse]:
    """Re-add a stored comment to its parent's reply list if it is missing."""
    try:
        comment = await controller.relink_comment(comment_id)
        return ResponseEnvelope.ok(CommentResponse.from_entity(comment))
    except PostTownError as e:
        raise handle_posttown_error(e) from e
