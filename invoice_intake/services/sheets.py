from urllib.parse import quote

from .google_http import GoogleAPIClient

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"


class SheetsClient(GoogleAPIClient):
    service = "Sheets"

    async def append_row(self, sheet_id: str, range_: str, values: list) -> dict:
        """
        Insert one row after the last row of the table in `range_`.

        Returns:
            {"updatedRange": ..., "updatedRows": ...}
        """
        response = await self._request(
            "POST",
            f"{SHEETS_API}/{sheet_id}/values/{quote(range_, safe='')}:append",
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [values]},
        )
        updates = response.json().get("updates", {})
        return {
            "updatedRange": updates.get("updatedRange"),
            "updatedRows": updates.get("updatedRows", 0),
        }

    async def read_column(self, sheet_id: str, column_range: str) -> list[list]:
        response = await self._request(
            "GET",
            f"{SHEETS_API}/{sheet_id}/values/{quote(column_range, safe='')}",
            params={"majorDimension": "ROWS"},
        )
        return response.json().get("values", [])
