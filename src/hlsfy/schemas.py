from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime
from enum import Enum
from hlsfy.models import JobStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Quality(CamelModel):
    height: int = Field(gt=0)
    bitrate: int = Field(gt=0)


class S3Destination(CamelModel):
    bucket: str = Field(min_length=1)
    region: str = Field(min_length=1)
    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1)
    path: str = Field(min_length=1)
    acl: Optional[str] = None
    endpoint: Optional[str] = None


class SubtitleSource(CamelModel):
    url: str = Field(min_length=1)
    # also names the normalized file, so path separators are refused
    language: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_-]+$")


class ExtraUpload(str, Enum):
    ENCODED_AUDIOS = "ENCODED_AUDIOS"
    ENCODED_VIDEOS = "ENCODED_VIDEOS"


class ConversionRequest(CamelModel):
    source: str = Field(min_length=1)
    default_audio_lang: str = "und"
    subtitles: List[SubtitleSource] = []
    qualities: List[Quality] = Field(min_length=1)
    s3: S3Destination
    extra_uploads: List[ExtraUpload] = []
    callback_url: Optional[str] = None
    process_id: Optional[int] = None

    def wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AudioTrackInfo(CamelModel):
    lang: str
    title: Optional[str] = None


class EncodedAudio(AudioTrackInfo):
    key: str


class EncodedVideo(Quality):
    key: str


class OutputMetadata(CamelModel):
    source_duration: float
    audio_tracks: List[AudioTrackInfo] = []
    qualities: List[Quality] = []
    encoded_audios: List[EncodedAudio] = []
    encoded_videos: List[EncodedVideo] = []


class JobResponse(CamelModel):
    id: int
    status: JobStatus
    source: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SubmitResponse(CamelModel):
    id: int
    status: JobStatus
    source: str
    message: str


class CallbackPayload(CamelModel):
    id: int
    status: JobStatus
    source_duration: Optional[float] = None
    params: dict
