"""Forms for the group blueprint."""

from flask_wtf import FlaskForm
from wtforms import SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional

from smaaks.core.constants import GROUP_CATEGORIES


class GroupForm(FlaskForm):
    """Form for creating a new group."""

    name = StringField("Nom du groupe", validators=[DataRequired(), Length(max=100)])
    description = TextAreaField(
        "Description", validators=[DataRequired(), Length(max=2000)]
    )
    category = SelectField(
        "Catégorie",
        choices=[(c, c) for c in GROUP_CATEGORIES],
        validators=[DataRequired()],
    )


class ReportForm(FlaskForm):
    """Form for reporting a group."""

    reason = StringField("Motif", validators=[DataRequired(), Length(max=200)])
    details = TextAreaField("Détails", validators=[Optional(), Length(max=2000)])


def validate_json_form(form_class, payload):
    """Validate a JSON payload with a form, returning the form or its errors."""
    form = form_class(formdata=None, data=payload, meta={"csrf": False})
    if form.validate():
        return form, None
    return form, {field: errors[0] for field, errors in form.errors.items()}
