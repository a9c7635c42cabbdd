"""Remove the favorite_food column again."""

from schemashift import Migration, RemoveColumn


class RemoveFavoriteFoodFromArtists(Migration):
    """Remove favorite food from artists."""

    def change(self):
        # Declaring the type keeps the removal reversible
        return [RemoveColumn(table="artists", column="favorite_food", type="string")]
