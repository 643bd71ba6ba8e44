from pydantic import BaseModel, ConfigDict

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

class GeoPoint(BaseModel):
    lat: float
    lng: float
