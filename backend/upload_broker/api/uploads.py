"""Upload broker routes: presign PUT/GET, multipart create/sign/complete/abort."""
from fastapi import APIRouter, BackgroundTasks, Depends, Request

from upload_broker.api.schemas import (
    AbortMultipartRequest,
    CompleteMultipartRequest,
    CompleteMultipartResponse,
    CreateMultipartRequest,
    CreateMultipartResponse,
    ErrorResponse,
    OkResponse,
    PresignGetRequest,
    PresignGetResponse,
    PresignPutRequest,
    PresignPutResponse,
    SignPartRequest,
    SignPartResponse,
)
from upload_broker.core.deps import (
    admit_issuance,
    admit_read,
    get_multipart_coordinator,
    get_notifier,
    get_presign_service,
    within_deadline,
)
from upload_broker.services.multipart import MultipartCoordinator
from upload_broker.services.notify import Notifier
from upload_broker.services.presign import PresignService

_ERRORS = {
    400: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

router = APIRouter(prefix="/s3", tags=["uploads"], responses=_ERRORS)


@router.post("/presign-put", response_model=PresignPutResponse)
async def presign_put(
    body: PresignPutRequest,
    background: BackgroundTasks,
    _caller: str = Depends(admit_issuance),
    presign: PresignService = Depends(get_presign_service),
    notifier: Notifier = Depends(get_notifier),
):
    result = presign.presign_put(
        body.key,
        body.content_type,
        content_length=body.content_length,
        expires_in=body.expires,
    )
    if notifier.enabled:
        background.add_task(notifier.upload_presigned, body.key, body.content_type)
    return PresignPutResponse(**result)


@router.post(
    "/presign",
    response_model=PresignGetResponse,
    responses={202: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@router.post("/presign-get", response_model=PresignGetResponse, include_in_schema=False)
async def presign_get(
    body: PresignGetRequest,
    request: Request,
    _caller: str = Depends(admit_read),
    presign: PresignService = Depends(get_presign_service),
):
    result = await within_deadline(request, presign.presign_get(body.key, expires_in=body.expires))
    return PresignGetResponse(**result)


@router.post("/create", response_model=CreateMultipartResponse)
async def create_multipart(
    body: CreateMultipartRequest,
    request: Request,
    _caller: str = Depends(admit_issuance),
    multipart: MultipartCoordinator = Depends(get_multipart_coordinator),
):
    result = await within_deadline(request, multipart.create(body.key, body.content_type, acl=body.acl))
    return CreateMultipartResponse(**result)


@router.post("/sign", response_model=SignPartResponse)
async def sign_part(
    body: SignPartRequest,
    _caller: str = Depends(admit_issuance),
    multipart: MultipartCoordinator = Depends(get_multipart_coordinator),
):
    result = multipart.sign_part(body.key, body.upload_id, body.part_number)
    return SignPartResponse(**result)


@router.post("/complete", response_model=CompleteMultipartResponse, response_model_exclude_none=True)
async def complete_multipart(
    body: CompleteMultipartRequest,
    request: Request,
    background: BackgroundTasks,
    _caller: str = Depends(admit_issuance),
    multipart: MultipartCoordinator = Depends(get_multipart_coordinator),
    notifier: Notifier = Depends(get_notifier),
):
    parts = [(p.part_number, p.etag) for p in body.parts]
    result = await within_deadline(request, multipart.complete(body.key, body.upload_id, parts))
    if notifier.enabled:
        background.add_task(notifier.multipart_completed, body.key, len(parts))
    return CompleteMultipartResponse(**result)


@router.post("/abort", response_model=OkResponse)
async def abort_multipart(
    body: AbortMultipartRequest,
    request: Request,
    _caller: str = Depends(admit_read),
    multipart: MultipartCoordinator = Depends(get_multipart_coordinator),
):
    result = await within_deadline(request, multipart.abort(body.key, body.upload_id))
    return OkResponse(**result)
