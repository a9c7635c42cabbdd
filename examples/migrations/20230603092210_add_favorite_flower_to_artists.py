"""Add a favorite_flower column to artists."""

from schemashift import AddColumn, Migration, RemoveColumn


class AddFavoriteFlowerToArtists(Migration):
    """Add favorite flower to artists."""

    version = "20230603092210"

    def up(self):
        return [AddColumn(table="artists", column="favorite_flower", type="string", default="")]

    def down(self):
        return [RemoveColumn(table="artists", column="favorite_flower")]
