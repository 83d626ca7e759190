from pydantic import BaseModel, ConfigDict, Field

# Largest value an Integer primary key column holds.
MAX_ROW_ID = 2_147_483_647


def is_row_id(value: int) -> bool:
    return 0 < value <= MAX_ROW_ID


class RentalPartiesDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerId: int = Field(gt=0, le=MAX_ROW_ID)
    movieId: int = Field(gt=0, le=MAX_ROW_ID)


class CheckoutRequest(RentalPartiesDto):
    pass


class ReturnRequest(RentalPartiesDto):
    pass
