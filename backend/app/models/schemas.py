from pydantic import BaseModel, field_validator


def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ""


class ClipRequest(BaseModel):
    url: str | None = None
    startTime: str | int | float | None = None  # timecode or seconds offset, passed through as-is
    endTime: str | int | float | None = None

    @field_validator("url", mode="before")
    @classmethod
    def stringify_url(cls, value):
        # yt-dlp takes the url as a plain argv string, so a bare number is still a url
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def is_complete(self) -> bool:
        return not any(_is_blank(v) for v in (self.url, self.startTime, self.endTime))


class ErrorResponse(BaseModel):
    error: str


class ClipErrorResponse(ErrorResponse):
    details: str
    fullError: str
