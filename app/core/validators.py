from typing import Any, List, Optional

from app.core.errors import ValidationError
from app.utils.text_utils import display_width


class Validator:
    """Input checks that collect `ValidationError`s instead of raising"""

    @staticmethod
    def validate_required(value: Any, field_name: str) -> List[ValidationError]:
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return [ValidationError(field=field_name, message="This field is required", value=value)]
        return []

    @staticmethod
    def validate_string_length(
        value: str,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None
    ) -> List[ValidationError]:
        errors = []

        if min_length and len(value) < min_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be at least {min_length} characters long",
                    value=len(value)
                )
            )

        if max_length and len(value) > max_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be no more than {max_length} characters long",
                    value=len(value)
                )
            )

        return errors

    @staticmethod
    def validate_display_width(
        value: str,
        field_name: str,
        min_width: int,
        max_width: int
    ) -> List[ValidationError]:
        """Length check where CJK ideographs and emoji take two columns"""
        width = display_width(value)
        if width < min_width:
            return [ValidationError(
                field=field_name,
                message=f"Must be at least {min_width} characters long",
                value=width
            )]
        if width > max_width:
            return [ValidationError(
                field=field_name,
                message=f"Must be no more than {max_width} characters long "
                        f"(CJK characters and emoji count as 2)",
                value=width
            )]
        return []

    @staticmethod
    def validate_enum(value: str, allowed_values: List[str], field_name: str) -> List[ValidationError]:
        if value not in allowed_values:
            return [ValidationError(
                field=field_name,
                message=f"Must be one of: {', '.join(allowed_values)}",
                value=value
            )]
        return []

    @staticmethod
    def validate_duration(
        value: Optional[int],
        field_name: str,
        max_minutes: int
    ) -> List[ValidationError]:
        """Optional duration in minutes; None means permanent"""
        if value is None:
            return []
        if isinstance(value, bool) or not isinstance(value, int) or value < 1 or value > max_minutes:
            return [ValidationError(
                field=field_name,
                message=f"Must be between 1 and {max_minutes} minutes",
                value=value
            )]
        return []

    @staticmethod
    def validate_optional_text(value: Optional[str], field_name: str, max_length: int) -> List[ValidationError]:
        if value is None:
            return []
        return Validator.validate_string_length(value, field_name, max_length=max_length)

    @staticmethod
    def validate_message_content(
        content: str,
        min_length: int,
        max_length: int,
        field_name: str = "message"
    ) -> List[ValidationError]:
        """Trimmed body length check; empty and too long are reported separately"""
        body = (content or "").strip()

        if len(body) < min_length:
            return [ValidationError(
                field=field_name,
                message="Message cannot be empty"
            )]

        if len(body) > max_length:
            return [ValidationError(
                field=field_name,
                message=f"Message cannot exceed {max_length} characters",
                value=len(body)
            )]

        return []
