from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from memory_engine.router import router as memory_router

from database import engine
import models
import memory_engine.models  # noqa: F401  (registers ai_memories tables)

# Veritabanı tablolarını oluştur (Yoksa)
models.Base.metadata.create_all(bind=engine)

# FastAPI Uygulamasını Başlat
app = FastAPI(
    title="AI Memory & Context Engine",
    description="Kullanıcı kayıtlarından gizlilik kurallarına uygun bağlam ve kalıcı hafıza üreten servis.",
    version="1.0.0"
)

# CORS Ayarları (Frontend bağlantısı için)
# Production'da allow_origins kısmına sadece frontend domainini ekleyin.
origins = [
    "http://localhost",
    "http://localhost:3000",  # React/Next.js varsayılan portu
    "http://localhost:8000",
    "http://localhost:8081",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Router'ları Bağla
app.include_router(memory_router)

@app.get("/")
async def health_check():
    """
    Sistem Sağlık Durumu Kontrolü
    """
    return {
        "status": "healthy",
        "service": "AI Memory & Context Engine",
        "version": "1.0.0"
    }

if __name__ == "__main__":
    import logging
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8000)
