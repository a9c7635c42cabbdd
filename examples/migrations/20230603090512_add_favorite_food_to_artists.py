"""Add a favorite_food column to artists."""

from schemashift import AddColumn, Migration


class AddFavoriteFoodToArtists(Migration):
    """Add favorite food to artists."""

    def change(self):
        return [AddColumn(table="artists", column="favorite_food", type="string")]
