"""Contact request model for concerto."""

from django.db import models


class ContactRequest(models.Model):
    """A visitor asking to be kept informed.

    Full names are unique: a second request under the same name is rejected
    rather than merged.
    """

    full_name = models.CharField(max_length=200, unique=True)
    email = models.EmailField()
    message = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.full_name} <{self.email}>"
