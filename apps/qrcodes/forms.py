from dataclasses import asdict, dataclass

from django import forms

from .models import QRCode
from .services import PRODUCT_VARIANT_ID_RE

RECORD_FIELDS = ("title", "product_id", "product_variant_id", "product_handle", "destination")


class QRCodeForm(forms.Form):
    title = forms.CharField(
        max_length=255,
        error_messages={"required": "Title is required"},
    )
    product_id = forms.CharField(
        max_length=255,
        error_messages={"required": "Product is required"},
    )
    product_variant_id = forms.CharField(max_length=255, required=False)
    product_handle = forms.CharField(max_length=255, required=False)
    destination = forms.ChoiceField(
        choices=QRCode.DESTINATION_CHOICES,
        error_messages={
            "required": "Destination is required",
            "invalid_choice": "Destination must be product or cart",
        },
    )

    def clean_product_variant_id(self):
        value = self.cleaned_data["product_variant_id"]
        if value and not PRODUCT_VARIANT_ID_RE.match(value):
            raise forms.ValidationError("Product variant is not recognised")
        return value

    def clean(self):
        cleaned_data = super().clean()
        if (
            cleaned_data.get("destination") == QRCode.DESTINATION_CART
            and not cleaned_data.get("product_variant_id")
            and "product_variant_id" not in self.errors
        ):
            self.add_error("product_variant_id", "Product variant is required for a cart destination")
        return cleaned_data

    def field_errors(self):
        if self.is_valid():
            return {}
        return {field: errors[0] for field, errors in self.errors.items()}

    def to_record(self):
        return {field: self.cleaned_data[field] for field in RECORD_FIELDS}


def validate_qr_code(data):
    errors = QRCodeForm(data).field_errors()
    if errors:
        return errors
    return None


@dataclass(frozen=True)
class QRCodeFormState:
    """Snapshot of what the editor shows.

    The form view keeps two of these: the clean baseline loaded from the
    store and the current state. Saving is only offered when they differ.
    """

    title: str = ""
    product_id: str = ""
    product_variant_id: str = ""
    product_handle: str = ""
    destination: str = QRCode.DESTINATION_PRODUCT
    product_title: str = ""
    product_image: str = ""
    product_alt: str = ""

    @classmethod
    def from_qr_code(cls, qr_code):
        if qr_code is None:
            return cls()
        return cls(**{field: qr_code.get(field) or "" for field in cls.field_names()})

    @classmethod
    def from_data(cls, data):
        return cls(**{field: data.get(field, "").strip() for field in cls.field_names()})

    @classmethod
    def field_names(cls):
        return tuple(cls.__dataclass_fields__)

    def is_dirty(self, clean):
        return self != clean

    def as_dict(self):
        return asdict(self)
