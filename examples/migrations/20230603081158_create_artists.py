"""Create the artists table."""

from schemashift import CreateTable, Migration


class CreateArtists(Migration):
    """Create the artists table."""

    def change(self):
        return [
            CreateTable(
                table="artists",
                columns={
                    "name": "string",
                    "genre": "string",
                    "age": "integer",
                    "hometown": "string",
                },
            ),
        ]
